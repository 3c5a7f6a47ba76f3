"""Application-wide constants."""

# Project status values
class ProjectStatus:
    """Project status constants."""
    CREATING = "creating"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"
    DELETED = "deleted"

    ALL = (CREATING, DEPLOYING, DEPLOYED, FAILED, DELETED)
    TERMINAL = (FAILED, DELETED)


# Allowed status writes, keyed by current status. Same-status entries are
# progress-message writes.
ALLOWED_TRANSITIONS = {
    ProjectStatus.CREATING: {
        ProjectStatus.CREATING,
        ProjectStatus.DEPLOYING,
        ProjectStatus.FAILED,
        ProjectStatus.DELETED,
    },
    ProjectStatus.DEPLOYING: {
        ProjectStatus.DEPLOYING,
        ProjectStatus.DEPLOYED,
        ProjectStatus.FAILED,
        ProjectStatus.DELETED,
    },
    ProjectStatus.DEPLOYED: {
        ProjectStatus.DEPLOYING,
        ProjectStatus.DELETED,
    },
    ProjectStatus.FAILED: {ProjectStatus.DELETED},
    ProjectStatus.DELETED: set(),
}


# Deployment states reported by the hosting platform
class DeploymentState:
    """Deployment state constants."""
    READY = "READY"
    ERROR = "ERROR"
    CANCELED = "CANCELED"
    DELETED = "DELETED"
    NO_DEPLOYMENTS = "NO_DEPLOYMENTS"
    TIMEOUT = "TIMEOUT"


# Outcomes of the deployment self-healing loop
class HealingOutcome:
    """Self-healing loop outcome constants."""
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    UNRECOVERABLE = "unrecoverable"
    NOT_REMEDIABLE = "not_remediable"


MAX_FIX_ATTEMPTS = 3
MAX_FILE_CHANGES = 20

# Upper bound for the error text embedded in a fix commit message
COMMIT_ERROR_EXCERPT_CHARS = 4000

# Paths never sent to the code generator: build output, lockfiles, media
DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".git/*",
    "node_modules",
    "node_modules/*",
    "dist",
    "dist/*",
    "build",
    "build/*",
    ".vercel",
    ".vercel/*",
    "coverage",
    "coverage/*",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.webp",
    "*.ico",
    "*.svg",
    "*.mp4",
    "*.webm",
    "*.woff",
    "*.woff2",
    "*.ttf",
    "*.eot",
    ".DS_Store",
    ".env*",
]
