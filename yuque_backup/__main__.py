from .mirror import main

main()
