"""marksync: keep a local bookmark folder in sync with remote work items.

Subpackages:
    providers/: One adapter per remote source (GitHub, Jira)
    sync/:      Auth manager, provider registry, sync engine, scheduler
    services/:  Persistence, bookmark folder and timer collaborators
    models/:    Pydantic records shared by storage and the API
    routers/:   FastAPI control surface
"""

__version__ = "0.1.0"
