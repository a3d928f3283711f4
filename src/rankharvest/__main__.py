from rankharvest.cli import main

main()
