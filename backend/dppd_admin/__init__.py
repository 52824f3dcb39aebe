"""DPPD admin backend: sessions, role mappings and page permissions."""
