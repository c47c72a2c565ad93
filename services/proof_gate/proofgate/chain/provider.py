from proofgate.config import CHAIN_PROVIDER
from proofgate.chain.rpc_reader import RpcChainReader
from proofgate.chain.stub_reader import StubChainReader

_reader = None

def get_chain_reader():
    """
    Singleton-ish reader factory.
    """
    global _reader
    if _reader is not None:
        return _reader

    if CHAIN_PROVIDER == "stub":
        _reader = StubChainReader()
        return _reader

    # default
    _reader = RpcChainReader()
    return _reader
