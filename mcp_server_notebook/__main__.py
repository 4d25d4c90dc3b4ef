from mcp_server_notebook.main import main

if __name__ == "__main__":
    main()
