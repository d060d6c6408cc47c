"""CommerceFlow web host."""
