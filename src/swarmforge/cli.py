"""SwarmForge CLI

コマンドラインインターフェース。
"""

import argparse
import json
import logging
import sys


def main():
    """メインエントリーポイント"""
    parser = argparse.ArgumentParser(
        description="SwarmForge - 分散作業スケジューリングコア",
        prog="swarmforge",
    )
    parser.add_argument("--config", help="設定ファイルパス（swarmforge.config.yaml）")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="ログレベル（省略時は設定値）",
    )

    subparsers = parser.add_subparsers(dest="command", help="利用可能なコマンド")

    # analyze コマンド
    analyze_parser = subparsers.add_parser("analyze", help="依存関係を解析しバッチを表示")
    analyze_parser.add_argument("features", help="Feature定義ファイル（YAML/JSON）")

    # plan コマンド
    plan_parser = subparsers.add_parser("plan", help="実行計画を作成")
    plan_parser.add_argument("features", help="Feature定義ファイル（YAML/JSON）")
    plan_parser.add_argument("--workers", required=True, help="Worker定義ファイル（YAML/JSON）")
    plan_parser.add_argument(
        "--no-optimize",
        action="store_true",
        help="負荷再配分を行わない",
    )

    # status コマンド
    status_parser = subparsers.add_parser("status", help="進捗スナップショットを表示")
    status_parser.add_argument("progress", help="進捗スナップショットファイル")

    args = parser.parse_args()
    _configure_logging(args)

    if args.command == "analyze":
        run_analyze(args)
    elif args.command == "plan":
        run_plan(args)
    elif args.command == "status":
        run_status(args)
    else:
        parser.print_help()
        sys.exit(1)


def _configure_logging(args):
    """設定値またはオプションからロギングを構成"""
    from .core import reload_settings

    settings = reload_settings(args.config)
    level = args.log_level or settings.logging.level
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _print_json(data):
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _load_analyzer(path):
    """Feature定義を読み込んだアナライザーを返す（エラー時は終了コード1）"""
    from .core import DependencyValidationError
    from .core.io import DefinitionFileError, load_features
    from .orchestrator import DependencyAnalyzer

    analyzer = DependencyAnalyzer()
    try:
        analyzer.add_features(load_features(path))
    except (DefinitionFileError, DependencyValidationError) as exc:
        print(f"✗ {exc}", file=sys.stderr)
        sys.exit(1)
    return analyzer


def run_analyze(args):
    """依存関係を解析"""
    analyzer = _load_analyzer(args.features)

    validation = analyzer.validate()
    detection = analyzer.detect_cycles()
    report = {
        "valid": validation.valid,
        "errors": validation.errors,
        "has_cycles": detection.has_cycles,
        "cycles": detection.cycles,
    }

    if not validation.valid or detection.has_cycles:
        _print_json(report)
        sys.exit(1)

    report["batches"] = [[f.id for f in batch] for batch in analyzer.generate_batches()]
    report["statistics"] = analyzer.get_statistics().to_dict()
    _print_json(report)


def run_plan(args):
    """実行計画を作成"""
    from .core import CycleError, DependencyValidationError, PlanningError, get_settings
    from .core.io import DefinitionFileError, load_workers
    from .orchestrator import ExecutionPlanner

    analyzer = _load_analyzer(args.features)
    planner = ExecutionPlanner(get_settings().planner)

    try:
        workers = load_workers(args.workers)
        batches = analyzer.generate_batches()
        plan = planner.create_execution_plan(batches, workers)
        if not args.no_optimize and get_settings().distribution.auto_optimize:
            plan = planner.optimize_plan(plan, workers)
    except (DefinitionFileError, DependencyValidationError, CycleError, PlanningError) as exc:
        print(f"✗ {exc}", file=sys.stderr)
        sys.exit(1)

    _print_json(
        {
            "plan": plan.model_dump(mode="json"),
            "statistics": planner.get_plan_statistics(plan).model_dump(mode="json"),
        }
    )


def run_status(args):
    """進捗スナップショットを表示"""
    from .core import PersistenceError
    from .orchestrator import ProgressAggregator

    aggregator = ProgressAggregator(args.progress, auto_save=False)
    try:
        aggregator.load()
    except PersistenceError as exc:
        print(f"✗ {exc}", file=sys.stderr)
        sys.exit(1)

    summary = aggregator.get_summary()
    progress = summary["progress"]

    print(f"\n=== Progress: {args.progress} ===")
    print(f"完了率: {progress['percent_complete']:.1f}%")
    print("\nFeature:")
    print(f"  総数: {progress['total_features']}")
    print(f"  完了: {progress['completed_features']}")
    print(f"  進行中: {progress['in_progress_features']}")
    print(f"  保留中: {progress['pending_features']}")
    print(f"  未着手: {progress['not_started_features']}")
    print(f"  失敗: {progress['failed_features']}")

    if summary["workers"]:
        print("\nWorker:")
        for worker in summary["workers"]:
            print(
                f"  {worker['id']}: {worker['status']} "
                f"(完了 {worker['completed']}, 失敗 {worker['failed']})"
            )

    failed = [f for f in aggregator.get_all_feature_progress() if f.status == "failed"]
    if failed:
        print(f"\n⚠ 失敗したFeature: {len(failed)}件")
        for record in failed:
            print(f"  - {record.feature_id}: {record.error}")


if __name__ == "__main__":
    main()
