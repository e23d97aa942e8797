import json
from glob import glob
from time import perf_counter

import pandas as pd

from treevote import load_ensemble

# ensemble.json and model_*.json as downloaded from the platform's API
with open("ensemble.json") as handler:
    ensemble_resource = json.load(handler)
models = []
for path in sorted(glob("model_*.json")):
    with open(path) as handler:
        models.append(json.load(handler))

t0 = perf_counter()
descriptor = load_ensemble(ensemble_resource, models)
ensemble = descriptor.into_engine(method=1, add_unused_fields=True, n_jobs=4)
print(f"load: {perf_counter()-t0:.3f} s ({len(descriptor.models)} trees)")

df = pd.read_csv("iris.csv")
rows = df.drop(columns=["species"]).to_dict(orient="records")

t0 = perf_counter(); predictions = ensemble.predict_batch(rows)
print(f"predict: {perf_counter()-t0:.3f} s")
print("accuracy:", (predictions == df["species"].values).mean())

print(json.dumps(ensemble.predict(rows[0], full=True), indent=2))
print(ensemble.predict_probability(rows[0]))
print(ensemble.predict_operating(rows[0], {"kind": "probability",
                                           "positive_class": "Iris-virginica",
                                           "threshold": 0.3}))

first_tree = ensemble.trees_[0]
for rule in first_tree.export_rules():
    print(rule)
try:
    first_tree.export_graphviz("iris_tree", format="dot")
except RuntimeError as e:
    print(f"Skipping Graphviz export: {e}")
