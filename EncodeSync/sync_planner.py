"""
Sync Planner - Lists both locations and classifies every file.

Planning never mutates anything: it reads the input listing, the output
listing and a snapshot of the store, and returns a SyncPlan.
"""

import logging

from .change_classifier import ChangeClassifier, SyncPlan
from .config import SyncConfig
from .encoded_store import EncodedSet
from .file_provider import FileProvider, provider_for

logger = logging.getLogger(__name__)


class SyncPlanner:
    """
    Builds the sync plan for one run.

    Usage:
        planner = SyncPlanner.from_config(config)
        plan = planner.plan(encoded_set.copy())
    """

    def __init__(self, config: SyncConfig, input_provider: FileProvider,
                 output_provider: FileProvider):
        self.config = config
        self.input_provider = input_provider
        self.output_provider = output_provider

    @classmethod
    def from_config(cls, config: SyncConfig) -> "SyncPlanner":
        return cls(
            config,
            provider_for(config.input_directory, config.temp_directory),
            provider_for(config.output_directory, config.temp_directory),
        )

    def plan(self, snapshot: EncodedSet) -> SyncPlan:
        """
        Compute the plan against a store snapshot.

        Raises:
            FilesystemError / TransferError: the input location can't be listed
            NamingCollisionError: the current settings map two files to one name
        """
        source_files = self.input_provider.list_files()
        logger.info(f"Found {len(source_files)} files in {self.input_provider!r}")

        # The output location may not exist yet on a first run
        output_files = self.output_provider.list_files(missing_ok=True)
        output_names = {f.path for f in output_files}
        logger.info(f"Found {len(output_names)} files in {self.output_provider!r}")

        plan = ChangeClassifier(self.config).classify(source_files, snapshot, output_names)
        logger.debug(
            "Plan: " + ", ".join(f"{action.name}={n}" for action, n in plan.counts.items())
        )
        return plan
