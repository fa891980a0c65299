import shlex
import sys
from pathlib import Path

import click

from .config import CleaveConfig, parse_cell_selection
from .constants import DEFAULT_TAG_ID
from .informatics.bam_functions import CleaveError
from .informatics.cleave_bam import CleaveResult, cleave_bam
from .logging_utils import get_logger, resolve_log_level, setup_logging

logger = get_logger(__name__)


def _configure_logging(cfg: CleaveConfig) -> None:
    log_file = Path(cfg.log_file) if cfg.log_file else None
    setup_logging(level=resolve_log_level(cfg.log_level), log_file=log_file, reconfigure=log_file is not None)


def _load_config(config_path):
    try:
        return CleaveConfig.from_csv(config_path)
    except ValueError as e:
        raise click.ClickException(f"Invalid config {config_path}: {e}") from e


def _run_config(cfg: CleaveConfig) -> CleaveResult:
    try:
        cfg.validate(require_paths=True)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    _configure_logging(cfg)
    try:
        result = cleave_bam(cfg)
    except CleaveError as e:
        raise click.ClickException(str(e)) from e
    _echo_summary(result, cfg)
    return result


def _echo_summary(result: CleaveResult, cfg: CleaveConfig) -> None:
    stats = result.statistics
    click.echo(f"Processed {result.commit_records} reads into {len(result.outputs)} BAM files")
    if cfg.group_mode:
        # group runs only route reads; nothing is counted
        admitted = result.registry.admitted() if result.registry is not None else []
        click.echo(
            f"  Groups: {len({b.channel for b in admitted})} group files "
            f"holding {len(admitted)} cells"
        )
        return
    for title, genome in stats.titled_genomes():
        click.echo(
            f"  {title}: {genome.mapped_pairs} mapped pairs, "
            f"{genome.single_mapped} singletons, {genome.chimeras} chimeras"
        )
    click.echo(f"  Unmapped reads: {stats.unmapped}")
    if result.registry is not None:
        click.echo(
            f"  Cells: {len(result.registry.admitted())} with their own file, "
            f"{len(result.registry.not_admitted())} in the rest file"
        )


@click.group()
@click.version_option(package_name="bamcleave")
def cli():
    """Command-line interface for bamcleave."""
    pass

####### Split a BAM ###########
@cli.command()
@click.option("-b", "--bam", "input_bam", required=True, type=click.Path(dir_okay=False), help="Input BAM file.")
@click.option("-m", "--chromosome-map", "chromosome_map_path", type=click.Path(exists=True, dir_okay=False), default=None, help="Tab-separated chromosome mapping file.")
@click.option("-g", "--groups", "group_file_path", type=click.Path(exists=True, dir_okay=False), default=None, help="Cell to group table (KEY-groupNumber lines).")
@click.option("-p", "--prefix", default=None, help="Extract chromosomes beginning with PREFIX, stripping it from their names.")
@click.option("-c", "--cells", default=None, help="Create BAM files for the top N cells, or for the cells listed in a file.")
@click.option("-t", "--tag", "tag_id", default=DEFAULT_TAG_ID, show_default=True, help="Tag identifying single cell identity.")
@click.option("-n", "--name-stop", "name_stop_chars", default=None, help="Take the cell identity from the read name, up to any of these characters.")
@click.option("-o", "--output-root", default=None, help="Output file root (default: input path without .bam).")
@click.option("--no-index", is_flag=True, help="Do NOT index the output BAM files.")
@click.option("--headers-only-groups", is_flag=True, help="With --groups, create the group files without routing reads into them.")
@click.option("--samtools-backend", type=click.Choice(["auto", "python", "cli"]), default="auto", show_default=True)
@click.option("--log-level", default="INFO", show_default=True)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None)
def split(
    input_bam,
    chromosome_map_path,
    group_file_path,
    prefix,
    cells,
    tag_id,
    name_stop_chars,
    output_root,
    no_index,
    headers_only_groups,
    samtools_backend,
    log_level,
    log_file,
):
    """Split a BAM into first/second genome files, optionally per cell."""
    try:
        max_cells, cell_list_path = parse_cell_selection(cells)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="-c") from e

    cfg = CleaveConfig(
        input_bam=input_bam,
        output_root=output_root,
        chromosome_map_path=chromosome_map_path,
        prefix=prefix,
        cell_mode=cells is not None or group_file_path is not None,
        max_cells=max_cells,
        cell_list_path=cell_list_path,
        group_file_path=group_file_path,
        tag_id=tag_id,
        name_stop_chars=name_stop_chars,
        materialize_groups=not headers_only_groups,
        index_outputs=not no_index,
        samtools_backend=samtools_backend,
        log_level=log_level,
        log_file=log_file,
        command_line=shlex.join(sys.argv),
    )
    _run_config(cfg)
##########################################

####### Split from a config CSV ###########
@cli.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
def run(config_path):
    """Split a BAM using the variable/value settings in CONFIG_PATH."""
    cfg, report = _load_config(config_path)
    if cfg.command_line is None:
        cfg.command_line = shlex.join(sys.argv)
    if report["unknown_keys"]:
        click.echo(f"Ignoring unknown config variables: {', '.join(report['unknown_keys'])}")
    _run_config(cfg)
##########################################

####### Show resolved config ###########
@cli.command("show-config")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
def show_config(config_path):
    """Print the configuration resolved from CONFIG_PATH as YAML."""
    cfg, _ = _load_config(config_path)
    click.echo(cfg.to_yaml())
##########################################
