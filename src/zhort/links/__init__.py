"""Short links: ownership-guarded mutation with an audit trail."""
