"""Minecraft PodDisruptionBudget manager.

Keeps a game server pod from being evicted while players are online:
 - probes the server with the Server List Ping status exchange
 - derives whether voluntary disruption must be blocked
 - writes the answer into a pre-existing PodDisruptionBudget with a
   resourceVersion-guarded patch, retried on conflicts
"""
