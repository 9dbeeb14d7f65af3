"""secretroll.activation

Generation rollover and the phased install pipeline.
"""

from secretroll.activation.generation import GenerationManager
from secretroll.activation.installer import SecretInstaller
from secretroll.activation.mount import DirectoryMounter, RamfsMounter, make_mounter
from secretroll.activation.pipeline import ActivationPipeline, build_pipeline, partition_specs
from secretroll.activation.scheduler import PhaseScheduler

__all__ = [
    "ActivationPipeline",
    "DirectoryMounter",
    "GenerationManager",
    "PhaseScheduler",
    "RamfsMounter",
    "SecretInstaller",
    "build_pipeline",
    "make_mounter",
    "partition_specs",
]
