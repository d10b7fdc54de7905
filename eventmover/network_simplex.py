#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""Primal network simplex solver for the transportation problem underlying the Earth Mover's Distance.

The solver follows the design of the network simplex in the `LEMON graph library <https://lemon.cs.elte.hu>`_,
specialized to complete bipartite graphs:

* every supply node is connected to every demand node by an uncapacitated arc whose cost is the ground
  distance between the two particles;
* the initial basis is a strongly feasible spanning tree made of artificial arcs between every node and an
  artificial root, with a Big-M cost on the arcs that carry flow into demand nodes;
* the entering arc is chosen by *block search* pricing: the arcs are scanned in blocks of about
  `sqrt(num_arcs)`, and the most negative reduced cost of the first block containing a negative one enters;
  the scan resumes where the previous one stopped;
* the leaving arc is the blocking arc of the cycle closed by the entering arc, with ties broken so that the
  tree stays strongly feasible, which rules out cycling on degenerate pivots.

.. sourcecode:: pycon

    >>> import numpy as np
    >>> from eventmover.network_simplex import NetworkSimplex, EMDStatus
    >>>
    >>> solver = NetworkSimplex()
    >>> status, cost = solver.solve([1.0, 1.0], [2.0], np.array([[1.0], [3.0]]))
    >>> status == EMDStatus.Success, cost
    (True, 4.0)

Pricing works on numpy arrays, the tree bookkeeping on plain lists; no state survives between calls
except the results of the last solve, so one instance can be reused, but not shared between threads.

"""

import enum
import logging
import math

import numpy as np


logger = logging.getLogger(__name__)

DEFAULT_N_ITER_MAX = 100000
DEFAULT_EPSILON_LARGE_FACTOR = 1000.0
BLOCK_SIZE_FACTOR = 1.0
MIN_BLOCK_SIZE = 10

# direction of the arc connecting a node to its parent in the spanning tree
DIR_UP = 1  # node -> parent
DIR_DOWN = -1  # parent -> node

# arc states; tree arcs never enter, arcs at their lower bound (zero flow) may
STATE_TREE = 0
STATE_LOWER = 1


class EMDStatus(enum.IntEnum):
    """Outcome of a transportation problem solve."""
    Success = 0
    Empty = 1
    SupplyMismatch = 2
    Unbounded = 3
    MaxIterReached = 4
    Infeasible = 5


class NetworkSimplex:
    """Min-cost flow solver for balanced bipartite transportation problems.

    Parameters
    ----------
    n_iter_max : int, optional
        Maximum number of pivots before giving up with :attr:`EMDStatus.MaxIterReached`.
    epsilon_large_factor : float, optional
        Numerical tolerance, as a multiple of the machine epsilon scaled by the largest cost (for reduced cost
        comparisons) or the largest total weight (for supply balance and feasibility checks).

    Attributes
    ----------
    status : :class:`EMDStatus` or None
        Status of the last solve.
    objective : float
        Optimal cost of the last solve.
    n_iter : int
        Number of pivots performed by the last solve.

    """
    def __init__(self, n_iter_max=DEFAULT_N_ITER_MAX, epsilon_large_factor=DEFAULT_EPSILON_LARGE_FACTOR):
        if n_iter_max <= 0:
            raise ValueError("n_iter_max must be positive, got %r" % n_iter_max)
        if epsilon_large_factor <= 0:
            raise ValueError("epsilon_large_factor must be positive, got %r" % epsilon_large_factor)
        self.n_iter_max = int(n_iter_max)
        self.epsilon_large_factor = float(epsilon_large_factor)
        self.status = None
        self.objective = 0.0
        self.n_iter = 0
        self._flows = np.zeros((0, 0))

    def solve(self, supplies, demands, costs):
        """Find the minimum-cost flow from `supplies` to `demands`.

        Parameters
        ----------
        supplies : array-like of float
            Non-negative weights of the supply nodes, shape `(n0,)`.
        demands : array-like of float
            Non-negative weights of the demand nodes, shape `(n1,)`. Must sum to the same total as `supplies`.
        costs : {array-like of float, function}
            Non-negative arc costs, either a `(n0, n1)` matrix or a function `cost(i, j)` of the node indices.

        Returns
        -------
        (:class:`EMDStatus`, float)
            Status of the solve and the cost of the flow found. The cost is only meaningful
            with :attr:`EMDStatus.Success`.

        Raises
        ------
        ValueError
            If the inputs are malformed: negative or non-finite weights or costs, or mismatched shapes.

        """
        supplies = np.array(supplies, dtype=np.float64).reshape(-1)
        demands = np.array(demands, dtype=np.float64).reshape(-1)
        n0, n1 = len(supplies), len(demands)
        for name, weights in (('supplies', supplies), ('demands', demands)):
            if not np.all(np.isfinite(weights)) or np.any(weights < 0):
                raise ValueError("%s must be finite and non-negative" % name)

        if callable(costs):
            costs = np.array([[costs(i, j) for j in range(n1)] for i in range(n0)], dtype=np.float64)
        else:
            costs = np.array(costs, dtype=np.float64)  # copy, never keep the caller's array
        costs = costs.reshape(n0, n1) if costs.size == n0 * n1 else costs
        if costs.shape != (n0, n1):
            raise ValueError("costs of shape %s don't match %i supplies and %i demands" % (costs.shape, n0, n1))
        if not np.all(np.isfinite(costs)) or np.any(costs < 0):
            raise ValueError("costs must be finite and non-negative")

        self.n_iter = 0
        self.objective = 0.0
        self._flows = np.zeros((n0, n1))
        self.status = self._run(supplies, demands, costs)
        return self.status, self.objective

    def flows(self):
        """Get the flow matrix of the last solve, shape `(n0, n1)`."""
        return self._flows

    @staticmethod
    def _cost_scale(costs):
        # largest cost, falling back to 1 only when every cost is zero
        scale = float(costs.max()) if costs.size else 0.0
        return scale if scale > 0 else 1.0

    def _epsilons(self, supplies, demands, costs):
        machine_eps = np.finfo(np.float64).eps
        weight_scale = max(supplies.sum(), demands.sum(), 1e-300)
        cost_scale = self._cost_scale(costs)
        factor = self.epsilon_large_factor * machine_eps
        return factor * weight_scale, factor * cost_scale

    def _run(self, supplies, demands, costs):
        n0, n1 = len(supplies), len(demands)
        total_supply, total_demand = supplies.sum(), demands.sum()
        weight_eps, cost_eps = self._epsilons(supplies, demands, costs)

        if total_supply <= weight_eps and total_demand <= weight_eps:
            return EMDStatus.Empty
        if abs(total_supply - total_demand) > weight_eps:
            logger.debug("supply %r does not match demand %r", total_supply, total_demand)
            return EMDStatus.SupplyMismatch

        node_num = n0 + n1
        arc_num = n0 * n1
        root = node_num
        art_cost = self._cost_scale(costs) * (node_num + 1)

        # search arcs: arc i * n1 + j goes from supply node i to demand node n0 + j
        search_source = np.repeat(np.arange(n0), n1)
        search_target = n0 + np.tile(np.arange(n1), n0)
        cost = np.concatenate([costs.ravel(), np.zeros(node_num)])
        state = np.full(arc_num, STATE_LOWER, dtype=np.int8)

        source = search_source.tolist() + [0] * node_num
        target = search_target.tolist() + [0] * node_num
        flow = [0.0] * (arc_num + node_num)

        supply = np.concatenate([supplies, -demands]).tolist()
        pi = np.zeros(node_num + 1)
        parent = [root] * node_num + [-1]
        pred = [-1] * (node_num + 1)
        pred_dir = [DIR_UP] * (node_num + 1)
        depth = [1] * node_num + [0]
        tree_arcs = [set() for _ in range(node_num + 1)]

        # initial spanning tree: one artificial arc per node, towards the root for supply nodes and nodes
        # without weight, away from it for demand nodes, so that every arc with zero flow points towards
        # the root and the tree starts strongly feasible
        for u in range(node_num):
            e = arc_num + u
            pred[u] = e
            if supply[u] >= 0:
                pred_dir[u] = DIR_UP
                source[e], target[e] = u, root
                flow[e] = supply[u]
            else:
                pred_dir[u] = DIR_DOWN
                source[e], target[e] = root, u
                flow[e] = -supply[u]
                cost[e] = art_cost
                pi[u] = art_cost
            tree_arcs[u].add(e)
            tree_arcs[root].add(e)
        cost_list = cost.tolist()

        block_size = max(int(BLOCK_SIZE_FACTOR * math.sqrt(arc_num)), MIN_BLOCK_SIZE)
        next_arc = 0

        while True:
            # block search pricing
            in_arc, scanned, pos = -1, 0, next_arc
            best = -cost_eps
            while scanned < arc_num:
                stop = min(pos + block_size, arc_num)
                reduced = state[pos:stop] * (cost[pos:stop] + pi[search_source[pos:stop]] - pi[search_target[pos:stop]])
                k = int(np.argmin(reduced))
                if reduced[k] < best:
                    best, in_arc = reduced[k], pos + k
                scanned += stop - pos
                pos = stop if stop < arc_num else 0
                if in_arc >= 0:
                    break
            if in_arc < 0:
                break
            next_arc = pos

            if self.n_iter >= self.n_iter_max:
                self._finish(flow, cost, arc_num, n0, n1)
                logger.warning("network simplex stopped after %i iterations", self.n_iter)
                return EMDStatus.MaxIterReached
            self.n_iter += 1

            # join node: lowest common ancestor of the entering arc's endpoints
            first, second = source[in_arc], target[in_arc]
            u, v = first, second
            while u != v:
                if depth[u] > depth[v]:
                    u = parent[u]
                elif depth[v] > depth[u]:
                    v = parent[v]
                else:
                    u, v = parent[u], parent[v]
            join = u

            # ratio test; flow runs first -> second along the entering arc, then back through the tree.
            # the first blocking arc on the first side and the last one on the second side keep the tree
            # strongly feasible
            delta, u_out, side = math.inf, -1, 0
            u = first
            while u != join:
                if pred_dir[u] == DIR_UP and flow[pred[u]] < delta:
                    delta, u_out, side = flow[pred[u]], u, 1
                u = parent[u]
            u = second
            while u != join:
                if pred_dir[u] == DIR_DOWN and flow[pred[u]] <= delta:
                    delta, u_out, side = flow[pred[u]], u, 2
                u = parent[u]
            if side == 0:
                self._finish(flow, cost, arc_num, n0, n1)
                return EMDStatus.Unbounded

            # augment along the cycle
            if delta > 0:
                flow[in_arc] += delta
                u = first
                while u != join:
                    flow[pred[u]] -= pred_dir[u] * delta
                    u = parent[u]
                u = second
                while u != join:
                    flow[pred[u]] += pred_dir[u] * delta
                    u = parent[u]
            out_arc = pred[u_out]
            flow[out_arc] = 0.0

            # swap the arcs in the tree
            tree_arcs[u_out].discard(out_arc)
            tree_arcs[parent[u_out]].discard(out_arc)
            if out_arc < arc_num:
                state[out_arc] = STATE_LOWER
            state[in_arc] = STATE_TREE
            if side == 1:
                u_in, v_in = first, second
            else:
                u_in, v_in = second, first
            tree_arcs[u_in].add(in_arc)
            tree_arcs[v_in].add(in_arc)

            # re-hang the subtree cut off by the leaving arc below v_in, updating potentials on the way
            parent[u_in] = v_in
            pred[u_in] = in_arc
            depth[u_in] = depth[v_in] + 1
            if source[in_arc] == u_in:
                pred_dir[u_in] = DIR_UP
                pi[u_in] = pi[v_in] - cost_list[in_arc]
            else:
                pred_dir[u_in] = DIR_DOWN
                pi[u_in] = pi[v_in] + cost_list[in_arc]
            stack = [u_in]
            while stack:
                x = stack.pop()
                for e in tree_arcs[x]:
                    if e == pred[x]:
                        continue
                    if source[e] == x:
                        y = target[e]
                        pred_dir[y] = DIR_DOWN
                        pi[y] = pi[x] + cost_list[e]
                    else:
                        y = source[e]
                        pred_dir[y] = DIR_UP
                        pi[y] = pi[x] - cost_list[e]
                    parent[y] = x
                    pred[y] = e
                    depth[y] = depth[x] + 1
                    stack.append(y)

        self._finish(flow, cost, arc_num, n0, n1)

        # artificial arcs must be empty in a feasible solution
        if max(flow[arc_num:]) > weight_eps:
            logger.debug("artificial arcs carry %r units of flow", sum(flow[arc_num:]))
            return EMDStatus.Infeasible
        return EMDStatus.Success

    def _finish(self, flow, cost, arc_num, n0, n1):
        flows = np.array(flow[:arc_num], dtype=np.float64)
        self._flows = flows.reshape(n0, n1)
        self.objective = float(np.dot(flows, cost[:arc_num]))

    def __str__(self):
        return "NetworkSimplex(n_iter_max=%i, epsilon_large_factor=%g)" % (self.n_iter_max, self.epsilon_large_factor)
