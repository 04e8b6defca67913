"""Show the full workstream hierarchy with release / task rollups."""
import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from workgraph import create_app
from workgraph.services import hierarchy_service, rollup_service

app = create_app(os.getenv("APP_ENV", "development"))
with app.app_context():
    roots = hierarchy_service.list_roots()
    for root in roots:
        report = rollup_service.aggregate(root.id)
        summary = report["summary"]
        print(f"\n{root.name} -- {summary['total_releases']} releases, "
              f"{summary['total_tasks']} tasks, {summary['completion_percentage']}% complete")
        for line in hierarchy_service.render_tree(root.id):
            print(f"  {line}")

    print("\n--- Totals ---")
    print(f"Root workstreams: {len(roots)}")
