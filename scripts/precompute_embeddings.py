import argparse
import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from paarth_server.config import settings
from paarth_server.embeddings.embedder import Embedder
from paarth_server.knowledge.loader import load_corpus, save_corpus


async def main(path: str, batch_size: int, force: bool) -> None:
    print(f"Loading knowledge base from {path}...")
    corpus = load_corpus(path)

    pending = [
        i for i, verse in enumerate(corpus.verses)
        if force or not verse.has_embedding
    ]
    if not pending:
        print("All verses already have embeddings.")
        return

    print(f"Embedding {len(pending)} of {len(corpus.verses)} verses...")
    embedder = Embedder()
    texts = [corpus.verses[i].embedding_text() for i in pending]

    # Fails the whole run on a bad batch so the file is never half-written
    vectors = await embedder.embed(texts, batch_size=batch_size)

    for i, vector in zip(pending, vectors):
        corpus.verses[i] = corpus.verses[i].with_embedding(vector)

    print("Saving knowledge base...")
    save_corpus(path, corpus)
    print("Done! Embeddings stored.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Precompute verse embeddings")
    parser.add_argument("--path", default=settings.knowledge_base_path)
    parser.add_argument("--batch-size", type=int, default=20)
    parser.add_argument("--force", action="store_true", help="Re-embed verses that already have embeddings")
    args = parser.parse_args()

    asyncio.run(main(args.path, args.batch_size, args.force))
