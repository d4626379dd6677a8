"""Form definition runtime: schema tree, editing operations and fill-time interpreters."""
