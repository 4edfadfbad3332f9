from pkgstash.cli import main

main()
