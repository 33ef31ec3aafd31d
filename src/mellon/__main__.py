from mellon.cli import main

main()
