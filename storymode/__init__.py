"""Story mode core: settings, storage, catalog and arc progression."""
