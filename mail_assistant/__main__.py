from mail_assistant.app import main

main()
