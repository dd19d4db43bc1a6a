from armband_relay.app import main

main()
