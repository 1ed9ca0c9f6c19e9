"""
AYB Migration Engine

Imports an existing application's data, users, access-control policies and files
from another backend platform into an AYB PostgreSQL database.

Supports:
- Supabase (live PostgreSQL to PostgreSQL, single transaction)
- Firebase (offline auth, Firestore, Realtime Database and Storage exports)
- PocketBase (embedded SQLite pb_data directory)
- Pre-flight analysis, confirmation and post-migration validation
"""

__version__ = "0.1.0"
