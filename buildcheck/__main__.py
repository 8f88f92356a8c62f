import argparse
import logging
import sys

from .errors import BuildCheckError, ConfigurationError
from .pipeline import Pipeline
from .runner import StageRunner
from .settings import PipelineConfig, Settings
from .utils import Utils


def create_parser():
    parser = argparse.ArgumentParser(
        prog="buildcheck",
        description=(
            "Run format and lint checks and unit tests with coverage for every Go package, "
            "write JUnit and Cobertura reports"
        ),
    )
    parser.add_argument("test_suite", help="Test suite to run, e.g. unit", type=str)
    parser.add_argument(
        "--config",
        help="JSON file with pipeline configuration, command line options override it",
        type=str,
        default="",
    )
    parser.add_argument(
        "--ignore",
        help="Package short names excluded from lint and coverage (replaces the configured list)",
        nargs="*",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--covermode",
        help="Coverage mode passed to go test",
        choices=Settings.COVER_MODES,
        default=None,
    )
    parser.add_argument(
        "--concurrency",
        help="Max number of packages tested in parallel",
        type=int,
        default=None,
    )
    parser.add_argument(
        "--build-dir",
        help=f"Output root for test and coverage reports (default {Settings.BUILD_DIR})",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--source-dir",
        help="Project root, the git top level directory when not set",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--continue-on-emit-error",
        help="Do not fail the run if a test log can not be converted into a report",
        action="store_true",
        default=None,
    )
    parser.add_argument(
        "--vet",
        help="Also run go vet over all packages after golint",
        action="store_true",
        default=None,
    )
    parser.add_argument(
        "--no-docker",
        help="Do not start the docker daemon before unit tests",
        action="store_true",
        default=False,
    )
    return parser


def build_config(args) -> PipelineConfig:
    config = PipelineConfig.from_file(args.config) if args.config else PipelineConfig()
    config = config.updated(
        suite_name=args.test_suite,
        ignore_packages=args.ignore,
        cover_mode=args.covermode,
        concurrency=args.concurrency,
        build_dir=args.build_dir,
        source_dir=args.source_dir,
        continue_on_emit_error=args.continue_on_emit_error,
        start_docker_daemon=False if args.no_docker else None,
        run_vet=args.vet,
    )
    return config.validate()


def main(argv=None, **pipeline_kwargs) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        pipeline = Pipeline.create(config, **pipeline_kwargs)
    except ConfigurationError as e:
        print(f"usage: {parser.prog} test_suite", file=sys.stderr)
        Utils.print_formatted_error(str(e))
        return e.exit_code

    logging.info("Run configuration: %s", config.to_json())
    runner = StageRunner(cleanups=pipeline.cleanups())
    try:
        exit_code = runner.run(pipeline.stages())
    except BuildCheckError as e:
        logging.error("%s", e)
        exit_code = e.exit_code
    finally:
        pipeline.close()

    if exit_code == Settings.EXIT_SUCCESS:
        logging.info("All stages passed, reports in [%s]", config.build_path)
    return exit_code


def cli():
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s: %(message)s"
    )
    sys.exit(main())


if __name__ == "__main__":
    cli()
