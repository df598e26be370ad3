from webhook_relay.serve import main

main()
