from vsphere_machine.main import main

main()
