"""Main entry point for the RAG pipeline server."""
import logging
import sys
import uvicorn
from .config import RAGConfig
from .server import create_app


def main():
    """Start RAG pipeline server."""
    config = RAGConfig.from_env()

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    print("=== RAG Pipeline Server v1.0.0 ===")
    print(f"Vector store: {config.vector_store} ({config.qdrant_url})")
    print(f"Embedding: {config.embedding_url}")
    print(f"LLM: {config.llm_url}")
    print(f"Rules: {config.rules_file or 'packaged defaults'}")
    print(f"Server: http://{config.host}:{config.port}")
    print("==================================")

    app = create_app(config)

    try:
        uvicorn.run(
            app,
            host=config.host,
            port=config.port,
            log_level="debug" if config.verbose else "info",
        )
    except KeyboardInterrupt:
        print("\nShutting down RAG pipeline server...")
        sys.exit(0)


if __name__ == "__main__":
    main()
