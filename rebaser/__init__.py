"""
Rebaser - SQL Server database replication

Moves a SQL Server database from a source server to a target server:
- Exports the source database to a BACPAC archive with sqlpackage
- Provisions a collision-free target database
- Imports the archive into the target
- Runs post-migration configuration scripts
- Tracks each replication as a cancellable background job
"""

__version__ = "0.1.0"
