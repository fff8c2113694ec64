from powerrepl.cli import main

main()
