#!/usr/bin/env python3
"""
ConceptSync - Concept Synchronization & Knowledge-Graph Engine

Main entry point for ConceptSync. Imports documents, runs inspection passes
that mine them into concepts and knowledge, synchronizes concepts, and prints
the resulting knowledge graph.
"""

import json
import logging
import sys
import argparse
from pathlib import Path

from conceptsync.agents import AgentRunner, agent_manager
from conceptsync.config import config
from conceptsync.database import DatabaseManager
from conceptsync.engine import KnowledgeEngine
from conceptsync.errors import ConceptSyncError
from conceptsync.importers import MockImporter, JSONExportImporter


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def run_import(engine: KnowledgeEngine, source: str, path: str = None):
    """
    Store documents from a source.

    A document whose title already exists gets its blocks replaced, so only
    the blocks that changed are queued for inspection.
    """
    if source == "json":
        importer = JSONExportImporter(path or config.get("import.default_json_path", "./documents.json"))
    else:
        importer = MockImporter()

    created = updated = 0
    for imported in importer.get_all_documents():
        existing = engine.db.find_document_by_title(imported.title)
        if existing:
            changed = engine.documents.update_content(existing.id, imported.blocks)
            if changed:
                updated += 1
                logging.info(f"Document '{imported.title}': {len(changed)} blocks changed")
        else:
            engine.documents.create_document(imported.title, imported.blocks, imported.doc_type)
            created += 1

    print(f"Imported {created} new documents, updated {updated}.")


def run_inspect(engine: KnowledgeEngine, document_id: str = None):
    """Inspect one document, or all of them."""
    if document_id:
        reports = [engine.inspect_document(document_id)]
    else:
        reports = engine.inspect_all_documents()

    for report in reports:
        if report.skipped:
            print(f"{report.document_id}: skipped, already being inspected")
            continue
        print(
            f"{report.document_id}: {len(report.inspected_blocks)} blocks mined, "
            f"{len(report.removed_blocks)} removed, {len(report.failed_blocks)} failed, "
            f"{len(report.synced_concepts)} concepts synced"
        )


def run_sync(engine: KnowledgeEngine, concept_id: str = None):
    """Sync one concept, or every unsynced concept."""
    if concept_id:
        results = {concept_id: engine.sync_concept(concept_id)}
    else:
        results = engine.sync_all_concepts()

    for synced_id, status in results.items():
        concept = engine.concepts.find(synced_id)
        name = concept.name if concept else synced_id
        print(f"{name}: {status.value}")


def list_concepts(engine: KnowledgeEngine):
    """Print visible concepts with their knowledge counts."""
    concepts = engine.concepts.get_visible_concepts()
    if not concepts:
        print("No concepts yet.")
        return

    for concept, kd_count in concepts:
        state = "synced" if concept.synced else "pending"
        print(f"{concept.name:<40} {kd_count:>3} knowledge  [{state}]  {concept.id}")


def find_concept(engine: KnowledgeEngine, name_or_id: str):
    """Look a concept up by id, else by its closest alias."""
    concept = engine.concepts.find(name_or_id)
    if concept:
        return concept

    matches = engine.concepts.search_concept_alias(name_or_id, limit=1)
    if not matches:
        print(f"No concept matches '{name_or_id}'.")
        return None
    return matches[0]


def show_concept(engine: KnowledgeEngine, name_or_id: str):
    """Print one concept with its knowledge, tags and children."""
    concept = find_concept(engine, name_or_id)
    if not concept:
        return

    print(f"# {concept.name}")
    if len(concept.aliases) > 1:
        print(f"Aliases: {', '.join(concept.aliases[1:])}")
    print(f"\n{concept.description or '(no description)'}\n")

    print("## Knowledge")
    for kd in engine.db.list_knowledge_data(concept_id=concept.id):
        print(f"- {kd.extracted_text or '(not extracted yet)'}")
        for quote in kd.quotes:
            print(f'    "{quote}"')

    print("\n## Tags")
    for tag in engine.db.list_object_tags(concept_id=concept.id):
        parent = engine.concepts.find(tag.object_concept_id)
        print(f"- {tag.object_name} (under {parent.name if parent else tag.object_concept_id})")
        for prop in engine.db.list_object_tag_properties(object_tag_id=tag.id):
            print(f"    {prop.name}: {prop.value if prop.value is not None else '-'}")

    children = engine.concepts.get_child_concepts(concept.id)
    if children:
        print("\n## Instances")
        for child in children:
            print(f"- {child.name}")


def search_knowledge(engine: KnowledgeEngine, query: str, concept: str = None, limit: int = 10):
    """Print the settled knowledge closest to a query, with its supporting quotes."""
    concept_id = None
    if concept:
        found = find_concept(engine, concept)
        if not found:
            return
        concept_id = found.id

    results = engine.search_knowledge(query, concept_id=concept_id, limit=limit)
    if not results:
        print("No matching knowledge.")
        return

    for kd, score in results:
        owner = engine.concepts.find(kd.concept_id)
        print(f"[{score:.2f}] {owner.name if owner else kd.concept_id}: {kd.extracted_text}")
        for quote in kd.quotes:
            print(f'    "{quote}"')


def collect_concept_mentions(engine: KnowledgeEngine, name_or_id: str):
    """Attach every note block that mentions a concept, then sync it."""
    concept = find_concept(engine, name_or_id)
    if not concept:
        return

    added = engine.collect_mentions(concept.id)
    print(f"{concept.name}: {added} new mentions")
    if added:
        print(f"{concept.name}: {engine.sync_concept(concept.id).value}")


def list_agent_calls(db: DatabaseManager, agent_name: str = None, success_only: bool = False, limit: int = 10):
    """Print the most recent logged agent calls."""
    calls = db.get_ai_agent_calls(agent_name=agent_name, success_only=success_only, limit=limit)
    if not calls:
        print("No AI agent calls found.")
        return

    print(f"Found {len(calls)} calls:")
    print(f"{'ID':<6} {'Agent':<22} {'Success':<8} {'Time (ms)':<10} {'Called At':<20}")
    print("-" * 70)

    for call in calls:
        success = "yes" if call["success"] else "no"
        execution_time = call["execution_time_ms"] or 0
        called_at = str(call["called_at"])[:19] if call["called_at"] else "Unknown"
        print(f"{call['call_id']:<6} {call['agent_name']:<22} {success:<8} {execution_time:<10} {called_at:<20}")


def show_agent_call(db: DatabaseManager, call_id: int):
    """Print everything needed to reproduce one logged agent call."""
    call = db.reproduce_ai_agent_call(call_id)
    if not call:
        print(f"Call ID {call_id} not found.")
        return

    print(f"# Call {call['call_id']}: {call['agent_name']}")
    print(f"Model: {call['model_name']}")
    print(f"Success: {'yes' if call['success'] else 'no'}")
    print(f"Execution Time: {call['execution_time_ms']}ms")
    if call["error_message"]:
        print(f"Error: {call['error_message']}")
    if call["document_id"]:
        print(f"Document: {call['document_id']}")
    if call["concept_id"]:
        print(f"Concept: {call['concept_id']}")

    print("\n## Input Data")
    try:
        print(json.dumps(json.loads(call["input_data"]), indent=2))
    except (TypeError, ValueError):
        print(call["input_data"])

    if call["system_prompt"]:
        print("\n## System Prompt")
        print(call["system_prompt"])

    print("\n## User Prompt")
    print(call["user_prompt"])

    print("\n## Raw Response")
    print(call["raw_response"])

    if call["parsed_response"]:
        print("\n## Parsed Response")
        print(call["parsed_response"])


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="ConceptSync - Concept Synchronization & Knowledge-Graph Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py import                          # Import the built-in sample documents
  python main.py import --source json --path notes.json
  python main.py inspect                         # Mine every document with pending edits
  python main.py sync                            # Sync every unsynced concept
  python main.py concepts                        # List concepts
  python main.py show TechGlobal                 # Show one concept
  python main.py search "smartphone chips"       # Search settled knowledge
  python main.py collect TechGlobal              # Attach every note block naming a concept
  python main.py calls --agent entity_extraction # List logged agent calls
  python main.py calls --id 42                   # Show one logged agent call
        """
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to the configuration file (default: config.yaml)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="ConceptSync 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import documents")
    import_parser.add_argument(
        "--source",
        choices=["mock", "json"],
        default="mock",
        help="Document source to use (default: mock)"
    )
    import_parser.add_argument("--path", type=str, help="Path to a JSON export (json source)")

    inspect_parser = subparsers.add_parser("inspect", help="Mine edited blocks into concepts and knowledge")
    inspect_parser.add_argument("--document", type=str, help="Only inspect this document id")

    sync_parser = subparsers.add_parser("sync", help="Synchronize unsynced concepts")
    sync_parser.add_argument("--concept", type=str, help="Only sync this concept id")

    subparsers.add_parser("concepts", help="List visible concepts")

    show_parser = subparsers.add_parser("show", help="Show a concept")
    show_parser.add_argument("concept", type=str, help="Concept id or alias")

    search_parser = subparsers.add_parser("search", help="Search settled knowledge")
    search_parser.add_argument("query", type=str, help="Text to look for")
    search_parser.add_argument("--concept", type=str, help="Only search the knowledge of this concept")
    search_parser.add_argument("--limit", type=int, default=10, help="Maximum number of results (default: 10)")

    collect_parser = subparsers.add_parser("collect", help="Attach every note block that mentions a concept")
    collect_parser.add_argument("concept", type=str, help="Concept id or alias")

    calls_parser = subparsers.add_parser("calls", help="Inspect logged agent calls")
    calls_parser.add_argument("--id", type=int, help="Show the details of one call")
    calls_parser.add_argument("--agent", type=str, help="Only list calls to this agent")
    calls_parser.add_argument("--success-only", action="store_true", help="Only list successful calls")
    calls_parser.add_argument("--limit", type=int, default=10, help="Maximum number of calls (default: 10)")

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_arguments()

    if args.config:
        config.config_path = Path(args.config)
        config.reload()
        agent_manager.reload_definitions()

    setup_logging()
    logging.info("ConceptSync - Concept Synchronization & Knowledge-Graph Engine")

    try:
        with DatabaseManager() as db:
            db.initialize_database()

            with AgentRunner(database_manager=db) as runner:
                engine = KnowledgeEngine(db, runner)

                if args.command == "import":
                    run_import(engine, args.source, args.path)
                elif args.command == "inspect":
                    run_inspect(engine, args.document)
                elif args.command == "sync":
                    run_sync(engine, args.concept)
                elif args.command == "concepts":
                    list_concepts(engine)
                elif args.command == "show":
                    show_concept(engine, args.concept)
                elif args.command == "search":
                    search_knowledge(engine, args.query, args.concept, args.limit)
                elif args.command == "collect":
                    collect_concept_mentions(engine, args.concept)
                elif args.command == "calls":
                    if args.id is not None:
                        show_agent_call(db, args.id)
                    else:
                        list_agent_calls(db, args.agent, args.success_only, args.limit)

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")

    except (ConceptSyncError, FileNotFoundError, ValueError) as e:
        logging.error(f"{args.command} failed: {e}")
        print(f"\n{args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
