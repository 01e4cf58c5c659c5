#!/usr/bin/env python3
"""
笔记同步 CLI

用法：
    python scripts/notes_sync.py serve --port 8000          # 启动 REST API
    python scripts/notes_sync.py init-db                    # 在 DATABASE_URL 上建表
    python scripts/notes_sync.py sync --owner alice         # 在本机副本上执行一轮同步
    python scripts/notes_sync.py sync --owner alice --label <label_id>
    python scripts/notes_sync.py status --owner alice       # 查看待推送统计

设备端的 bearer token 从 --token 或环境变量 NOTES_SYNC_TOKEN 读取。
"""

import argparse
import json
import os
import sys
from pathlib import Path

# 添加 backend 到 Python 路径
backend_dir = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(backend_dir))


def cmd_serve(args):
    """启动 REST API"""
    import uvicorn

    print(f"启动笔记 API: http://{args.host}:{args.port}")
    print(f"健康检查: http://{args.host}:{args.port}/health")
    uvicorn.run(
        "app.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
    )
    return 0


def cmd_init_db(args):
    """建表"""
    from domains.note_hub.core.store import NoteStore

    store = NoteStore()
    try:
        store.ensure_schema()
    finally:
        store.close()
    print("数据库表已就绪")
    return 0


def _open_replica():
    from domains.infra.settings import get_sync_settings
    from domains.sync_hub import ReplicaStore

    return ReplicaStore(get_sync_settings().replica_path)


def cmd_sync(args):
    """执行一轮同步并输出报告"""
    from domains.core import ApplicationError
    from domains.infra.logging import configure_logging
    from domains.sync_hub import (
        HttpConnectivityChecker,
        RemoteNotesClient,
        SyncOrchestrator,
        SyncScheduler,
        SyncScope,
    )

    configure_logging(service_name="notes-sync")

    token = args.token or os.getenv("NOTES_SYNC_TOKEN")
    if not token:
        print("缺少 token：使用 --token 或设置 NOTES_SYNC_TOKEN")
        return 1

    scope = SyncScope.for_label(args.label) if args.label else SyncScope()
    replica = _open_replica()
    client = RemoteNotesClient.from_settings(lambda: token)
    try:
        connectivity = HttpConnectivityChecker.from_settings()
        orchestrator = SyncOrchestrator.from_settings(replica, client, connectivity)
        scheduler = SyncScheduler.from_settings(orchestrator, connectivity, owner_id=args.owner, scope=scope)
        try:
            report = scheduler.run_now()
        except ApplicationError as e:
            print(f"同步失败: {e}")
            return 1
    finally:
        client.close()
        replica.close()

    if report is None:
        print("已有同步在运行")
        return 1
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    return 0 if report.outcome.value != "failure" else 2


def cmd_status(args):
    """查看本机副本的待推送统计"""
    from domains.infra.settings import get_sync_settings
    from domains.sync_hub import NotesRepository

    replica = _open_replica()
    try:
        repo = NotesRepository(replica, max_rejections=get_sync_settings().max_rejections)
        summary = repo.pending_summary(args.owner)
        cursor = replica.get_cursor(args.owner, "global")
    finally:
        replica.close()

    print(f"副本: {replica.path}")
    print(f"上次同步: {cursor.last_synced_at.isoformat() if cursor else '从未同步'}")
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="离线优先笔记同步工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
    %(prog)s serve --port 8000        # 启动 REST API
    %(prog)s sync --owner alice       # 同步一次
    %(prog)s status --owner alice     # 查看待推送统计
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="命令")

    # serve 命令
    serve_parser = subparsers.add_parser("serve", help="启动 REST API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="监听地址")
    serve_parser.add_argument("--port", type=int, default=8000, help="监听端口")
    serve_parser.add_argument("--log-level", default="info", help="uvicorn 日志级别")
    serve_parser.add_argument("--reload", action="store_true", help="代码修改后自动重启")

    # init-db 命令
    subparsers.add_parser("init-db", help="在 DATABASE_URL 上建表")

    # sync 命令
    sync_parser = subparsers.add_parser("sync", help="执行一轮同步")
    sync_parser.add_argument("--owner", required=True, help="所有者 ID")
    sync_parser.add_argument("--token", help="bearer token（默认读取 NOTES_SYNC_TOKEN）")
    sync_parser.add_argument("--label", help="只同步某个标签范围")

    # status 命令
    status_parser = subparsers.add_parser("status", help="查看待推送统计")
    status_parser.add_argument("--owner", required=True, help="所有者 ID")

    args = parser.parse_args()

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "init-db":
        return cmd_init_db(args)
    elif args.command == "sync":
        return cmd_sync(args)
    elif args.command == "status":
        return cmd_status(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
