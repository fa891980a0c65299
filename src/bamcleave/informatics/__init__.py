from .bam_functions import CleaveError, SourceReader, index_bam, resolve_samtools_backend
from .bucket_registry import Bucket, BucketRegistry, BucketState
from .chimera_stats import ChimeraDetector, CleaveStatistics, GenomeStats
from .cleave_bam import CleavePhase, CleaveResult, CleaveRun, cleave_bam, extract_bucket_key
from .mapping_files import GroupTable, load_bucket_list, load_chromosome_map, load_group_table
from .output_channels import ChannelMultiplexer, OutputChannel
from .reference_remap import ReferenceRemapTable, RemapEntry, build_remap_table


__all__ = [
    "Bucket",
    "BucketRegistry",
    "BucketState",
    "ChannelMultiplexer",
    "ChimeraDetector",
    "CleaveError",
    "CleavePhase",
    "CleaveResult",
    "CleaveRun",
    "CleaveStatistics",
    "GenomeStats",
    "GroupTable",
    "OutputChannel",
    "ReferenceRemapTable",
    "RemapEntry",
    "SourceReader",
    "build_remap_table",
    "cleave_bam",
    "extract_bucket_key",
    "index_bam",
    "load_bucket_list",
    "load_chromosome_map",
    "load_group_table",
    "resolve_samtools_backend",
]
