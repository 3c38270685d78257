from modweaver.models.install import DeployedFileRow, InstalledModRow

__all__ = [
    "DeployedFileRow",
    "InstalledModRow",
]
