# Config module - re-exports for convenience
#
#   ProjectCredentials - endpoint/project/key of one backend project
#   TransferConfig     - page sizes, worker polling, checkpoint location
#   ProjectRegistry    - named projects in ~/.studio_transfer/projects.yaml
#
from .config import (  # noqa: F401
    ProjectCredentials,
    ProjectRegistry,
    TransferConfig,
    load_config,
    normalize_endpoint,
    resolve_project,
)
