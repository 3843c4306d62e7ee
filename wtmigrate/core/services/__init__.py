"""Application services: producers (downloader, provisioner), analyzer and migrator."""
