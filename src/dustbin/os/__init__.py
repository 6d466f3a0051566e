"""Platform-specific backends, selected in ``dustbin.os.platform``."""
