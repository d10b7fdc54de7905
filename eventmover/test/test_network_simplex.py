#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""
Automated tests for the network simplex transportation solver.
"""

import logging
import unittest

import numpy as np
from scipy.optimize import linprog

from eventmover.network_simplex import EMDStatus, NetworkSimplex


def transport_lp(supplies, demands, costs):
    """Optimal cost of a balanced transportation problem, solved as a generic linear program."""
    n0, n1 = len(supplies), len(demands)
    a_eq = np.zeros((n0 + n1, n0 * n1))
    for i in range(n0):
        a_eq[i, i * n1:(i + 1) * n1] = 1.0
    for j in range(n1):
        a_eq[n0 + j, j::n1] = 1.0
    b_eq = np.concatenate([supplies, demands])
    result = linprog(np.asarray(costs).ravel(), A_eq=a_eq, b_eq=b_eq, bounds=(0, None), method='highs')
    assert result.success, result.message
    return result.fun


def random_problem(n0, n1, seed):
    rng = np.random.default_rng(seed)
    supplies = rng.uniform(0.1, 1.0, size=n0)
    demands = rng.uniform(0.1, 1.0, size=n1)
    demands *= supplies.sum() / demands.sum()
    costs = rng.uniform(0.0, 2.0, size=(n0, n1))
    return supplies, demands, costs


class TestNetworkSimplex(unittest.TestCase):
    def setUp(self):
        self.solver = NetworkSimplex()

    def test_single_arc(self):
        status, cost = self.solver.solve([1.0], [1.0], [[2.5]])
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost, 2.5)
        np.testing.assert_allclose(self.solver.flows(), [[1.0]])

    def test_two_sources_one_sink(self):
        status, cost = self.solver.solve([1.0, 1.0], [2.0], np.array([[1.0], [3.0]]))
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost, 4.0)

    def test_prefers_cheap_arcs(self):
        costs = np.array([[0.0, 1.0], [1.0, 0.0]])
        status, cost = self.solver.solve([1.0, 1.0], [1.0, 1.0], costs)
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost, 0.0)
        np.testing.assert_allclose(self.solver.flows(), np.eye(2))

    def test_matches_linear_program(self):
        for seed, (n0, n1) in enumerate([(2, 3), (4, 4), (5, 2), (7, 6), (10, 9), (1, 6)]):
            supplies, demands, costs = random_problem(n0, n1, seed)
            status, cost = self.solver.solve(supplies, demands, costs)
            self.assertEqual(status, EMDStatus.Success)
            self.assertAlmostEqual(cost, transport_lp(supplies, demands, costs), places=8)

    def test_flows_are_feasible(self):
        supplies, demands, costs = random_problem(6, 8, seed=123)
        status, cost = self.solver.solve(supplies, demands, costs)
        self.assertEqual(status, EMDStatus.Success)
        flows = self.solver.flows()
        self.assertEqual(flows.shape, (6, 8))
        self.assertTrue(np.all(flows >= 0))
        np.testing.assert_allclose(flows.sum(axis=1), supplies, atol=1e-12)
        np.testing.assert_allclose(flows.sum(axis=0), demands, atol=1e-12)
        self.assertAlmostEqual(cost, np.sum(flows * costs))

    def test_zero_weight_nodes(self):
        supplies = np.array([1.0, 0.0, 1.0])
        demands = np.array([0.0, 2.0])
        costs = np.array([[1.0, 2.0], [0.0, 0.0], [3.0, 0.5]])
        status, cost = self.solver.solve(supplies, demands, costs)
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost, 2.5)

    def test_degenerate_equal_costs(self):
        costs = np.ones((4, 4))
        status, cost = self.solver.solve(np.full(4, 0.25), np.full(4, 0.25), costs)
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost, 1.0)

    def test_degenerate_zero_weights(self):
        rng = np.random.default_rng(5)
        for _ in range(10):
            supplies = rng.integers(0, 3, size=8).astype(float)
            demands = rng.integers(0, 3, size=7).astype(float)
            supplies[0] += 1.0
            gap = supplies.sum() - demands.sum()
            if gap > 0:
                demands[0] += gap
            else:
                supplies[0] -= gap
            costs = rng.integers(0, 3, size=(8, 7)).astype(float)
            status, cost = self.solver.solve(supplies, demands, costs)
            self.assertEqual(status, EMDStatus.Success)
            self.assertAlmostEqual(cost, transport_lp(supplies, demands, costs), places=8)

    def test_large_magnitudes(self):
        supplies, demands, costs = random_problem(5, 5, seed=7)
        status, cost = self.solver.solve(supplies * 1e6, demands * 1e6, costs * 1e4)
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost / 1e10, transport_lp(supplies, demands, costs), places=8)

    def test_small_magnitudes(self):
        supplies, demands, costs = random_problem(12, 10, seed=11)
        expected = transport_lp(supplies, demands, costs)
        for scale in (1e-3, 1e-9, 1e-12, 1e-13):
            status, cost = self.solver.solve(supplies, demands, costs * scale)
            self.assertEqual(status, EMDStatus.Success)
            self.assertAlmostEqual(cost / scale, expected, places=8)

    def test_callable_costs(self):
        supplies, demands, costs = random_problem(3, 4, seed=3)
        status, cost = self.solver.solve(supplies, demands, lambda i, j: costs[i, j])
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost, transport_lp(supplies, demands, costs), places=8)

    def test_costs_are_copied(self):
        costs = np.array([[1.0, 2.0], [2.0, 1.0]])
        self.solver.solve([1.0, 1.0], [1.0, 1.0], costs)
        costs[:] = 100.0
        self.assertAlmostEqual(self.solver.objective, 2.0)

    def test_empty(self):
        status, cost = self.solver.solve([], [], np.zeros((0, 0)))
        self.assertEqual(status, EMDStatus.Empty)
        self.assertEqual(cost, 0.0)

        status, cost = self.solver.solve([0.0, 0.0], [0.0], np.ones((2, 1)))
        self.assertEqual(status, EMDStatus.Empty)

    def test_supply_mismatch(self):
        status, _ = self.solver.solve([1.0], [2.0], [[1.0]])
        self.assertEqual(status, EMDStatus.SupplyMismatch)

        status, _ = self.solver.solve([1.0], [], np.zeros((1, 0)))
        self.assertEqual(status, EMDStatus.SupplyMismatch)

    def test_rounding_within_tolerance(self):
        status, cost = self.solver.solve([0.1, 0.2], [0.3 + 1e-16], [[1.0], [1.0]])
        self.assertEqual(status, EMDStatus.Success)
        self.assertAlmostEqual(cost, 0.3)

    def test_max_iter_reached(self):
        solver = NetworkSimplex(n_iter_max=1)
        supplies, demands, costs = random_problem(4, 4, seed=11)
        status, _ = solver.solve(supplies, demands, costs)
        self.assertEqual(status, EMDStatus.MaxIterReached)
        self.assertEqual(solver.n_iter, 1)

    def test_invalid_inputs(self):
        with self.assertRaises(ValueError):
            self.solver.solve([-1.0, 2.0], [1.0], np.ones((2, 1)))
        with self.assertRaises(ValueError):
            self.solver.solve([1.0], [1.0], np.ones((2, 2)))
        with self.assertRaises(ValueError):
            self.solver.solve([1.0], [1.0], [[-1.0]])
        with self.assertRaises(ValueError):
            self.solver.solve([1.0], [np.nan], [[1.0]])
        with self.assertRaises(ValueError):
            NetworkSimplex(n_iter_max=0)
        with self.assertRaises(ValueError):
            NetworkSimplex(epsilon_large_factor=-1.0)

    def test_reuse_instance(self):
        first = random_problem(3, 5, seed=1)
        second = random_problem(6, 2, seed=2)
        self.solver.solve(*first)
        status, cost = self.solver.solve(*second)
        self.assertEqual(status, EMDStatus.Success)
        self.assertEqual(self.solver.flows().shape, (6, 2))
        self.assertAlmostEqual(cost, transport_lp(*second), places=8)


if __name__ == '__main__':
    logging.basicConfig(format='%(asctime)s : %(levelname)s : %(message)s', level=logging.DEBUG)
    unittest.main()
