"""Call lineage discovery over the Language Server Protocol."""
