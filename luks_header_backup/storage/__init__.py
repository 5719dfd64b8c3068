"""Discovery, extraction and naming of LUKS header backups."""
