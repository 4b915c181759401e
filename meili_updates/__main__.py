from .index import main

main()
