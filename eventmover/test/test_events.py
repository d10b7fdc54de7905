#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Copyright (C) 2021 RaRe Technologies s.r.o.
# Licensed under the GNU LGPL v2.1 - http://www.gnu.org/licenses/lgpl.html

"""
Automated tests for events, event sources and preprocessors.
"""

import logging
import pickle
import unittest

import numpy as np
from testfixtures import LogCapture

from eventmover.events import ArrayEventProducer, Event, Particle, as_event, events_from_producer
from eventmover.preprocessing import CenterWeightedCentroid
from eventmover.test.utils import common_events, get_tmpfile


class TestEvent(unittest.TestCase):
    def test_construction(self):
        event = Event([1.0, 2.0], [[0.0, 0.0], [1.0, 0.5]])
        self.assertEqual(len(event), 2)
        self.assertEqual(event.dim, 2)
        self.assertEqual(event.total_weight, 3.0)
        self.assertEqual(event[1], Particle(2.0, (1.0, 0.5)))
        self.assertEqual(list(event), [Particle(1.0, (0.0, 0.0)), Particle(2.0, (1.0, 0.5))])

    def test_immutable(self):
        event = Event([1.0], [[0.0, 0.0]])
        with self.assertRaises(ValueError):
            event.weights[0] = 2.0
        with self.assertRaises(ValueError):
            event.coords[0, 0] = 2.0

    def test_weights_only(self):
        event = Event([0.5, 0.5, 1.0])
        self.assertEqual(event.dim, 0)
        self.assertEqual(event.coords.shape, (3, 0))

    def test_invalid(self):
        with self.assertRaises(ValueError):
            Event([1.0, -1.0], [[0.0], [1.0]])
        with self.assertRaises(ValueError):
            Event([np.inf], [[0.0]])
        with self.assertRaises(ValueError):
            Event([1.0, 1.0], [[0.0, 0.0]])

    def test_from_particles(self):
        event = Event.from_particles([(1.0, [0.0, 1.0]), Particle(3.0, (2.0, 2.0))])
        self.assertEqual(event, Event([1.0, 3.0], [[0.0, 1.0], [2.0, 2.0]]))
        empty = Event.from_particles([], dim=3)
        self.assertEqual(len(empty), 0)
        self.assertEqual(empty.dim, 3)
        self.assertEqual(empty.total_weight, 0.0)

    def test_equality(self):
        self.assertEqual(common_events[2], Event([0.5, 0.5], [[0.0, 0.0], [0.0, 1.0]]))
        self.assertNotEqual(common_events[2], common_events[3])
        self.assertNotEqual(common_events[0], 'event')

    def test_pickle(self):
        event = common_events[4]
        self.assertEqual(pickle.loads(pickle.dumps(event)), event)


class TestAsEvent(unittest.TestCase):
    def setUp(self):
        self.expected = Event([1.0, 2.0], [[0.0, 0.0], [3.0, 4.0]])

    def test_formats(self):
        self.assertIs(as_event(self.expected), self.expected)
        self.assertEqual(as_event(([1.0, 2.0], [[0.0, 0.0], [3.0, 4.0]])), self.expected)
        self.assertEqual(as_event(np.array([[1.0, 0.0, 0.0], [2.0, 3.0, 4.0]])), self.expected)
        self.assertEqual(as_event([(1.0, (0.0, 0.0)), (2.0, (3.0, 4.0))]), self.expected)

    def test_two_particle_tuple(self):
        self.assertEqual(as_event(((1.0, (0.0, 0.0)), (2.0, (3.0, 4.0)))), self.expected)
        self.assertEqual(as_event((Particle(1.0, (0.0, 0.0)), Particle(2.0, (3.0, 4.0)))), self.expected)
        self.assertEqual(as_event((np.array([1.0, 2.0]), np.array([[0.0, 0.0], [3.0, 4.0]]))), self.expected)

    def test_weight_vectors(self):
        self.assertEqual(as_event(np.array([0.2, 0.8])), Event([0.2, 0.8]))
        self.assertEqual(as_event([0.2, 0.8]), Event([0.2, 0.8]))

    def test_unsupported(self):
        with self.assertRaises(TypeError):
            as_event(42)
        with self.assertRaises(TypeError):
            as_event(np.zeros((2, 2, 2)))


class TestArrayEventProducer(unittest.TestCase):
    def test_iteration(self):
        producer = ArrayEventProducer(common_events)
        self.assertEqual(producer.num_accepted, len(common_events))
        with self.assertRaises(IndexError):
            producer.particles()
        self.assertTrue(producer.next())
        self.assertEqual(producer.particles(), list(common_events[0]))
        self.assertEqual(len(list(producer)), len(common_events))
        self.assertFalse(producer.next())

    def test_max_events(self):
        producer = ArrayEventProducer(common_events, max_events=2)
        self.assertEqual(len(producer), 2)
        self.assertEqual(events_from_producer(producer), common_events[:2])

    def test_events_from_producer(self):
        producer = ArrayEventProducer(common_events)
        producer.next()
        with LogCapture('eventmover.events') as log:
            events = events_from_producer(producer)
        log.check(('eventmover.events', 'INFO', 'read 6 events from ArrayEventProducer'))
        self.assertEqual(events, common_events)

    def test_persistence(self):
        fname = get_tmpfile('eventmover_producer.tst')
        ArrayEventProducer(common_events[:3]).save(fname)
        loaded = ArrayEventProducer.load(fname)
        self.assertEqual(events_from_producer(loaded), common_events[:3])


class TestCenterWeightedCentroid(unittest.TestCase):
    def test_centering(self):
        event = CenterWeightedCentroid()(Event([1.0, 3.0], [[0.0, 0.0], [4.0, 0.0]]))
        np.testing.assert_allclose(event.coords, [[-3.0, 0.0], [1.0, 0.0]])
        np.testing.assert_allclose(event.weights, [1.0, 3.0])
        np.testing.assert_allclose(np.dot(event.weights, event.coords), 0.0, atol=1e-12)

    def test_weightless_events(self):
        preprocessor = CenterWeightedCentroid()
        empty = Event([], np.zeros((0, 2)))
        self.assertIs(preprocessor(empty), empty)
        zero = Event([0.0], [[1.0, 1.0]])
        self.assertIs(preprocessor(zero), zero)
        weights_only = Event([1.0, 2.0])
        self.assertIs(preprocessor(weights_only), weights_only)


if __name__ == '__main__':
    logging.basicConfig(format='%(asctime)s : %(levelname)s : %(message)s', level=logging.DEBUG)
    unittest.main()
