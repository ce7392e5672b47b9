import json
import sys
from pathlib import Path
from typing import Any

SCRIPT_DIR = Path(__file__).resolve().parent
sys.path = [path for path in sys.path if Path(path).resolve() != SCRIPT_DIR]

REPO_ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(REPO_ROOT))
sys.path.insert(0, str(BACKEND_DIR))

from db import SessionLocal  # noqa: E402
from documents.store import SqlDocumentStore  # noqa: E402
from scenario.store import ScenarioGraphService, SqlGraphStore  # noqa: E402

DEMO_FILE = SCRIPT_DIR / "demo" / "documents.json"


def load_demo(path: Path = DEMO_FILE) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def seed_documents(store: SqlDocumentStore, documents: list[dict]) -> None:
    for item in documents:
        document = store.put(
            item["kind"],
            item["id"],
            item["version"],
            item["content"],
            active=item.get("active", False),
        )
        print(f"Seeded {document.label} ({document.hash[:12]})")


def seed_graphs(service: ScenarioGraphService, graphs: list[dict]) -> None:
    for item in graphs:
        graph = service.set_graph(item["id"], item["graph"])
        print(f"Seeded scenario graph {item['id']} ({len(graph.nodes)} nodes)")


def main() -> None:
    demo = load_demo()
    seed_documents(SqlDocumentStore(SessionLocal), demo.get("documents", []))
    seed_graphs(ScenarioGraphService(SqlGraphStore(SessionLocal)), demo.get("graphs", []))


if __name__ == "__main__":
    main()
