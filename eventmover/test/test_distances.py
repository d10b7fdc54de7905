#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""
Automated tests for the ground distances.
"""

import logging
import unittest

import numpy as np
from scipy.spatial.distance import pdist, squareform

from eventmover.distances import CallableDistance, EuclideanDistance, PrecomputedDistance, YPhiDistance


class TestEuclideanDistance(unittest.TestCase):
    def test_distances(self):
        dist = EuclideanDistance(dim=2)
        got = dist(np.array([[0.0, 0.0], [1.0, 1.0]]), np.array([[3.0, 4.0]]))
        np.testing.assert_allclose(got, [[5.0], [np.sqrt(13.0)]])

    def test_any_dimension(self):
        dist = EuclideanDistance()
        coords = np.random.default_rng(0).normal(size=(4, 5))
        np.testing.assert_allclose(dist(coords, coords), squareform(pdist(coords)), atol=1e-12)

    def test_empty(self):
        self.assertEqual(EuclideanDistance()(np.zeros((0, 2)), np.ones((3, 2))).shape, (0, 3))

    def test_dimension_mismatch(self):
        with self.assertRaises(ValueError):
            EuclideanDistance(dim=3)(np.zeros((1, 2)), np.zeros((1, 2)))
        with self.assertRaises(ValueError):
            EuclideanDistance()(np.zeros((1, 2)), np.zeros((1, 3)))

    def test_description(self):
        self.assertEqual(EuclideanDistance().description(), 'EuclideanDistance')
        self.assertEqual(EuclideanDistance(dim=3).description(), 'EuclideanDistance3D')


class TestYPhiDistance(unittest.TestCase):
    def test_periodic_azimuth(self):
        dist = YPhiDistance()
        coords0 = np.array([[0.0, 0.1], [1.0, np.pi]])
        coords1 = np.array([[0.0, 2 * np.pi - 0.1], [1.0, 0.0], [4.0, 0.1 + 4 * np.pi]])
        expected = [
            [0.2, np.hypot(1.0, 0.1), 4.0],
            [np.hypot(1.0, np.pi - 0.1), np.pi, np.hypot(3.0, np.pi - 0.1)],
        ]
        np.testing.assert_allclose(dist(coords0, coords1), expected, atol=1e-12)

    def test_requires_two_dimensions(self):
        with self.assertRaises(ValueError):
            YPhiDistance()(np.zeros((1, 3)), np.zeros((1, 3)))


class TestCallableDistance(unittest.TestCase):
    def test_manhattan(self):
        dist = CallableDistance(lambda x, y: np.abs(x - y).sum(), dim=2)
        got = dist(np.array([[0.0, 0.0], [1.0, 2.0]]), np.array([[3.0, 4.0]]))
        np.testing.assert_allclose(got, [[7.0], [4.0]])

    def test_negative(self):
        dist = CallableDistance(lambda x, y: -1.0)
        with self.assertRaises(ValueError):
            dist(np.zeros((1, 1)), np.zeros((1, 1)))


class TestPrecomputedDistance(unittest.TestCase):
    def setUp(self):
        self.square = np.array([[0.0, 1.0, 2.0], [1.0, 0.0, 3.0], [2.0, 3.0, 0.0]])

    def test_layouts(self):
        for dists in (self.square, self.square.ravel(), [1.0, 2.0, 3.0], [0.0, 1.0, 2.0, 0.0, 3.0, 0.0]):
            dist = PrecomputedDistance(dists, n0=3, n1=3)
            self.assertEqual((dist.n0, dist.n1), (3, 3))
            np.testing.assert_allclose(dist.dists, self.square)

    def test_inferred_size(self):
        np.testing.assert_allclose(PrecomputedDistance([1.0, 2.0, 3.0]).dists, self.square)
        np.testing.assert_allclose(PrecomputedDistance(self.square.ravel()).dists, self.square)
        # six values fit both triangles; the condensed layout of four particles wins
        self.assertEqual(PrecomputedDistance(np.arange(1.0, 7.0)).dists.shape, (4, 4))

    def test_rectangular(self):
        dist = PrecomputedDistance(np.arange(6.0), n0=2, n1=3)
        np.testing.assert_allclose(dist(np.zeros((2, 0)), np.zeros((3, 0))), [[0.0, 1.0, 2.0], [3.0, 4.0, 5.0]])
        with self.assertRaises(ValueError):
            dist(np.zeros((3, 0)), np.zeros((2, 0)))

    def test_read_only_copy(self):
        source = self.square.copy()
        dist = PrecomputedDistance(source)
        source[0, 1] = 10.0
        self.assertEqual(dist.dists[0, 1], 1.0)
        with self.assertRaises(ValueError):
            dist.dists[0, 1] = 5.0

    def test_invalid(self):
        with self.assertRaises(ValueError):
            PrecomputedDistance([1.0, 2.0, 3.0, 4.0, 5.0])
        with self.assertRaises(ValueError):
            PrecomputedDistance([[0.0, -1.0], [-1.0, 0.0]])
        with self.assertRaises(ValueError):
            PrecomputedDistance(np.arange(6.0), n0=2, n1=4)


if __name__ == '__main__':
    logging.basicConfig(format='%(asctime)s : %(levelname)s : %(message)s', level=logging.DEBUG)
    unittest.main()
