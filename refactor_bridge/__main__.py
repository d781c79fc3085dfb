from refactor_bridge.main import main

main()
