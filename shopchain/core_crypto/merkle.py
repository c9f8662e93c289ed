"""
Merkle Tree over transaction hashes

Lets a caller prove that one transaction is part of a mined block without
shipping the whole block: the proof is the list of sibling hashes on the
path from the leaf to the root.

- Leaves are prefixed with 0x00, internal nodes with 0x01
- An odd layer duplicates its last node
"""

from typing import List, Optional, Tuple

from .hashing import sha256


ProofStep = Tuple[bytes, str]


class MerkleTree:
    """
    Example:
        >>> tree = MerkleTree()
        >>> root = tree.build([b"tx1", b"tx2", b"tx3"])
        >>> MerkleTree.verify_proof(b"tx2", tree.get_proof(1), root)
        True
    """

    def __init__(self):
        self._layers: List[List[bytes]] = []

    @staticmethod
    def hash_leaf(data: bytes) -> bytes:
        return sha256(b'\x00' + data)

    @staticmethod
    def hash_internal(left: bytes, right: bytes) -> bytes:
        return sha256(b'\x01' + left + right)

    def build(self, leaves: List[bytes]) -> bytes:
        """
        Build the tree and return its root.

        Raises:
            ValueError: If leaves list is empty
        """
        if not leaves:
            raise ValueError("Cannot build Merkle tree with no leaves")

        layer = [self.hash_leaf(leaf) for leaf in leaves]
        self._layers = [layer]

        while len(layer) > 1:
            if len(layer) % 2 == 1:
                layer = layer + [layer[-1]]
            layer = [
                self.hash_internal(layer[i], layer[i + 1])
                for i in range(0, len(layer), 2)
            ]
            self._layers.append(layer)

        return layer[0]

    @property
    def root(self) -> Optional[bytes]:
        return self._layers[-1][0] if self._layers else None

    @property
    def leaf_count(self) -> int:
        return len(self._layers[0]) if self._layers else 0

    def get_proof(self, index: int) -> List[ProofStep]:
        """
        Authentication path for the leaf at ``index``.

        Returns:
            List of (sibling_hash, position) where position is 'left' or
            'right', ordered from leaf to root

        Raises:
            ValueError: If tree not built or index out of range
        """
        if not self._layers:
            raise ValueError("Tree has not been built yet")
        if index < 0 or index >= self.leaf_count:
            raise ValueError(f"Index {index} out of range [0, {self.leaf_count - 1}]")

        proof = []
        position = index
        for layer in self._layers[:-1]:
            if len(layer) % 2 == 1:
                layer = layer + [layer[-1]]
            if position % 2 == 0:
                proof.append((layer[position + 1], 'right'))
            else:
                proof.append((layer[position - 1], 'left'))
            position //= 2
        return proof

    @staticmethod
    def verify_proof(leaf_data: bytes, proof: List[ProofStep], root: bytes) -> bool:
        current = MerkleTree.hash_leaf(leaf_data)
        for sibling, side in proof:
            if side == 'left':
                current = MerkleTree.hash_internal(sibling, current)
            else:
                current = MerkleTree.hash_internal(current, sibling)
        return current == root


def build_merkle_root(leaves: List[bytes]) -> bytes:
    """Build a tree and return only its root."""
    return MerkleTree().build(leaves)
