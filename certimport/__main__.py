from certimport.cli.certimport_cli import main

main()
