from ristretto.ring import RingBuffer, RingStripe


class RecordingConsumer:
    def __init__(self, save):
        self.save = save
        self.batches = []

    def push(self, items):
        if self.save:
            self.batches.append(items)
            return True
        return False


def test_ring_drain():
    consumer = RecordingConsumer(save=True)
    r = RingBuffer(consumer, 1)
    for i in range(100):
        r.push(i)
    assert len(consumer.batches) == 100


def test_ring_reset():
    consumer = RecordingConsumer(save=False)
    r = RingBuffer(consumer, 4)
    for i in range(100):
        r.push(i)
    assert consumer.batches == []


def test_ring_consumer():
    consumer = RecordingConsumer(save=True)
    r = RingBuffer(consumer, 4)
    for i in range(100):
        r.push(i)
    drained = {item for batch in consumer.batches for item in batch}
    assert 0 < len(drained) <= 100
    assert drained <= set(range(100))


def test_stripe_hands_over_full_batch():
    consumer = RecordingConsumer(save=True)
    stripe = RingStripe(consumer, 3)
    for i in range(7):
        stripe.push(i)
    assert consumer.batches == [[0, 1, 2], [3, 4, 5]]
    assert stripe.data == [6]


def test_stripe_discards_rejected_batch():
    consumer = RecordingConsumer(save=False)
    stripe = RingStripe(consumer, 2)
    stripe.push(1)
    stripe.push(2)
    assert stripe.data == []
    stripe.push(3)
    assert stripe.data == [3]