import argparse

import numpy as np

from tapegrad import array_ops
from tapegrad.engine import get_engine
from tapegrad.logger import setup_logger
from tapegrad.segment_ops import gather, unsorted_segment_sum

logger = setup_logger(__name__)
np.random.seed(1337)

PAD_TOKEN = 0


def make_dataset(num_sentences, vocab_size, max_len):
    """
    Synthetic bag-of-words regression: each token has a hidden score and a
    sentence's target is the sum of its tokens' scores. Sentences are padded
    to ``max_len`` with PAD_TOKEN.
    """
    token_scores = np.random.randn(vocab_size).astype(np.float32)
    token_scores[PAD_TOKEN] = 0.0
    lengths = np.random.randint(1, max_len + 1, size=num_sentences)

    tokens = np.full((num_sentences, max_len), PAD_TOKEN)
    for i, length in enumerate(lengths):
        tokens[i, :length] = np.random.randint(1, vocab_size, size=length)
    targets = token_scores[tokens].sum(axis=1)
    return tokens, targets.astype(np.float32)


def flatten_batch(tokens):
    """
    Flatten padded sentences into one token list plus the sentence each token
    belongs to. Padding positions get segment id -1 so they are dropped from
    the pooled sum and receive no gradient.
    """
    flat_tokens = tokens.reshape(-1)
    segment_ids = np.repeat(np.arange(tokens.shape[0]), tokens.shape[1])
    segment_ids[flat_tokens == PAD_TOKEN] = -1
    return flat_tokens, segment_ids


def forward(embeddings, weights, flat_tokens, segment_ids, num_sentences):
    token_vectors = gather(embeddings, flat_tokens)  # (num_tokens, dim)
    sentence_vectors = unsorted_segment_sum(
        token_vectors, segment_ids, num_sentences
    )  # (num_sentences, dim)
    return array_ops.sum(sentence_vectors * weights, axis=1)  # (num_sentences,)


def mse_loss(predictions, targets):
    diff = predictions + (-targets)
    return array_ops.sum(diff * diff) * (1.0 / targets.shape[0])


def train(epochs, lr, vocab_size, embedding_dim):
    engine = get_engine()
    tokens, targets = make_dataset(256, vocab_size, max_len=8)
    flat_tokens, segment_ids = flatten_batch(tokens)

    embeddings = array_ops.tensor(
        0.1 * np.random.randn(vocab_size, embedding_dim).astype(np.float32)
    )
    weights = array_ops.tensor(
        0.1 * np.random.randn(embedding_dim).astype(np.float32)
    )

    for epoch in range(epochs):
        loss, (d_embeddings, d_weights) = engine.gradients(
            lambda e, w: mse_loss(
                forward(e, w, flat_tokens, segment_ids, tokens.shape[0]), targets
            ),
            [embeddings, weights],
        )
        # Tensors are immutable, so SGD rebinds the parameters to new values
        embeddings = array_ops.tensor(embeddings.numpy() - lr * d_embeddings.numpy())
        weights = array_ops.tensor(weights.numpy() - lr * d_weights.numpy())

        if epoch % max(1, epochs // 10) == 0:
            logger.info(f"Epoch: {epoch}\n\tLoss: {float(loss.numpy()):.4f}")

    # padding tokens carry segment id -1, so the padding row gets zero gradient
    logger.info(
        f"Padding embedding norm: {np.linalg.norm(d_embeddings.numpy()[PAD_TOKEN]):.6f}"
    )
    return embeddings, weights


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Train a bag-of-embeddings regressor")
    parser.add_argument("--epochs", type=int, default=200)
    parser.add_argument("--lr", type=float, default=0.05)
    parser.add_argument("--vocab-size", type=int, default=50)
    parser.add_argument("--embedding-dim", type=int, default=8)
    args = parser.parse_args()

    train(args.epochs, args.lr, args.vocab_size, args.embedding_dim)
