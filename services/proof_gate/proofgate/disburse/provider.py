from proofgate.config import DISBURSER
from proofgate.disburse.stub_disburser import StubDisburser
from proofgate.disburse.web3_disburser import Web3Disburser

_disburser = None

def get_disburser():
    global _disburser
    if _disburser is not None:
        return _disburser

    if DISBURSER == "web3":
        _disburser = Web3Disburser()
        return _disburser

    _disburser = StubDisburser()
    return _disburser
