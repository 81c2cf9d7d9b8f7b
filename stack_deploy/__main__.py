from stack_deploy.main import main

main()
