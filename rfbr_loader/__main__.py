from rfbr_loader.gui.app import main

main()
