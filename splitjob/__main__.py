from splitjob.cli import main


main()
