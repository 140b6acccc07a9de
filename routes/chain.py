# routes/chain.py
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.chain import ChainNode, get_chain_node
from utils.jwt import verify_token

router = APIRouter(tags=["chain"])


class ContractCall(BaseModel):
    method: str
    args: List[Any] = Field(default_factory=list)


@router.get("/chain")
def chain_info(node: ChainNode = Depends(get_chain_node)):
    return {
        "chainId": node.chain_id,
        "name": node.network_name,
        "blockNumber": node.block_number,
        "automine": node.automine,
    }


@router.post("/deployments")
def deploy_contract(user=Depends(verify_token), node: ChainNode = Depends(get_chain_node)):
    return node.deploy(user["address"])


@router.get("/contracts/{address}/code")
def contract_code(address: str, node: ChainNode = Depends(get_chain_node)):
    return {"address": address.lower(), "deployed": node.has_code(address)}


@router.post("/contracts/{address}/call")
def call_contract(address: str, call: ContractCall, node: ChainNode = Depends(get_chain_node)):
    return {"result": node.call(address, call.method, call.args)}


@router.post("/contracts/{address}/transactions")
def send_transaction(
    address: str,
    call: ContractCall,
    user=Depends(verify_token),
    node: ChainNode = Depends(get_chain_node),
):
    tx_hash = node.send_transaction(user["address"], address, call.method, call.args)
    return {"hash": tx_hash}


@router.get("/contracts/{address}/logs")
def contract_logs(
    address: str,
    event: Optional[str] = None,
    batch_id: Optional[int] = Query(None, alias="batchId"),
    participant: Optional[str] = None,
    from_block: int = Query(0, alias="fromBlock"),
    node: ChainNode = Depends(get_chain_node),
):
    return {"logs": node.get_logs(address, event=event, batch_id=batch_id, participant=participant, from_block=from_block)}


@router.get("/transactions/{tx_hash}")
def get_transaction(tx_hash: str, node: ChainNode = Depends(get_chain_node)):
    return node.get_transaction(tx_hash)


@router.get("/transactions/{tx_hash}/receipt")
def get_receipt(tx_hash: str, node: ChainNode = Depends(get_chain_node)):
    return {"receipt": node.get_receipt(tx_hash)}


@router.post("/mine")
def mine_block(node: ChainNode = Depends(get_chain_node)):
    return node.mine()
