"""
Canonical Medication Reference Data

Generic names (keys) mapped to their therapeutic classes and brand/alias names.
Class order matters: the first shared class is reported as the most specific one
when two medications are compared for duplicate therapy.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple


@dataclass(frozen=True)
class CanonicalMedicationEntry:
    """Immutable reference entry for one generic drug."""
    classes: Tuple[str, ...]
    aliases: Tuple[str, ...]


def _entry(classes: List[str], aliases: List[str]) -> CanonicalMedicationEntry:
    return CanonicalMedicationEntry(classes=tuple(classes), aliases=tuple(aliases))


_STATIN = ['statin', 'cholesterol-lowering', 'cardiovascular']
_NSAID = ['nsaid', 'pain-reliever', 'anti-inflammatory']
_ACE = ['ace-inhibitor', 'blood-pressure', 'cardiovascular']
_ARB = ['arb', 'blood-pressure', 'cardiovascular']
_BETA_BLOCKER = ['beta-blocker', 'blood-pressure', 'cardiovascular']
_CCB = ['calcium-channel-blocker', 'blood-pressure', 'cardiovascular']
_ANTICOAGULANT = ['anticoagulant', 'blood-thinner', 'cardiovascular']
_ANTIPLATELET = ['antiplatelet', 'blood-thinner', 'cardiovascular']
_PPI = ['ppi', 'proton-pump-inhibitor', 'acid-reducer', 'gi']
_SSRI = ['ssri', 'antidepressant', 'psychiatric']
_SNRI = ['snri', 'antidepressant', 'psychiatric']


_CANONICAL_DATA: Dict[str, CanonicalMedicationEntry] = {
    # Statins
    'atorvastatin': _entry(_STATIN, ['lipitor']),
    'rosuvastatin': _entry(_STATIN, ['crestor']),
    'simvastatin': _entry(_STATIN, ['zocor']),
    'pravastatin': _entry(_STATIN, ['pravachol']),
    'lovastatin': _entry(_STATIN, ['mevacor', 'altoprev']),
    'pitavastatin': _entry(_STATIN, ['livalo']),
    'fluvastatin': _entry(_STATIN, ['lescol']),
    'cerivastatin': _entry(_STATIN, ['baycol']),

    # NSAIDs and analgesics
    'ibuprofen': _entry(_NSAID, ['advil', 'motrin', 'nurofen']),
    'naproxen': _entry(_NSAID, ['aleve', 'naprosyn', 'anaprox']),
    'meloxicam': _entry(_NSAID, ['mobic']),
    'celecoxib': _entry(_NSAID + ['cox-2-inhibitor'], ['celebrex']),
    'diclofenac': _entry(_NSAID, ['voltaren', 'cambia', 'zipsor']),
    'indomethacin': _entry(_NSAID, ['indocin']),
    'ketorolac': _entry(_NSAID, ['toradol']),
    'piroxicam': _entry(_NSAID, ['feldene']),
    'aspirin': _entry(_NSAID + ['antiplatelet', 'blood-thinner'], ['asa', 'ecotrin', 'bayer']),
    'acetaminophen': _entry(['pain-reliever', 'analgesic', 'antipyretic'], ['tylenol', 'paracetamol']),

    # ACE inhibitors
    'lisinopril': _entry(_ACE, ['prinivil', 'zestril']),
    'enalapril': _entry(_ACE, ['vasotec']),
    'ramipril': _entry(_ACE, ['altace']),
    'benazepril': _entry(_ACE, ['lotensin']),
    'captopril': _entry(_ACE, ['capoten']),
    'fosinopril': _entry(_ACE, ['monopril']),
    'quinapril': _entry(_ACE, ['accupril']),
    'trandolapril': _entry(_ACE, ['mavik']),
    'perindopril': _entry(_ACE, ['aceon']),
    'moexipril': _entry(_ACE, ['univasc']),

    # ARBs
    'losartan': _entry(_ARB, ['cozaar']),
    'valsartan': _entry(_ARB, ['diovan']),
    'olmesartan': _entry(_ARB, ['benicar']),
    'irbesartan': _entry(_ARB, ['avapro']),
    'telmisartan': _entry(_ARB, ['micardis']),
    'candesartan': _entry(_ARB, ['atacand']),
    'azilsartan': _entry(_ARB, ['edarbi']),
    'eprosartan': _entry(_ARB, ['teveten']),

    # Beta blockers
    'metoprolol': _entry(_BETA_BLOCKER, ['lopressor', 'toprol', 'toprol-xl']),
    'atenolol': _entry(_BETA_BLOCKER, ['tenormin']),
    'carvedilol': _entry(_BETA_BLOCKER, ['coreg']),
    'propranolol': _entry(_BETA_BLOCKER, ['inderal']),
    'bisoprolol': _entry(_BETA_BLOCKER, ['zebeta']),
    'nebivolol': _entry(_BETA_BLOCKER, ['bystolic']),
    'nadolol': _entry(_BETA_BLOCKER, ['corgard']),
    'labetalol': _entry(_BETA_BLOCKER, ['trandate', 'normodyne']),
    'pindolol': _entry(_BETA_BLOCKER, ['visken']),
    'acebutolol': _entry(_BETA_BLOCKER, ['sectral']),
    'betaxolol': _entry(_BETA_BLOCKER, ['kerlone']),
    'timolol': _entry(_BETA_BLOCKER, ['blocadren']),

    # Calcium channel blockers
    'amlodipine': _entry(_CCB, ['norvasc']),
    'diltiazem': _entry(_CCB, ['cardizem', 'tiazac', 'dilacor']),
    'verapamil': _entry(_CCB, ['calan', 'isoptin', 'verelan']),
    'nifedipine': _entry(_CCB, ['procardia', 'adalat']),
    'felodipine': _entry(_CCB, ['plendil']),
    'nicardipine': _entry(_CCB, ['cardene']),
    'nisoldipine': _entry(_CCB, ['sular']),
    'isradipine': _entry(_CCB, ['dynacirc']),

    # Diuretics
    'hydrochlorothiazide': _entry(['diuretic', 'thiazide', 'blood-pressure', 'cardiovascular'], ['hctz', 'microzide']),
    'furosemide': _entry(['diuretic', 'loop-diuretic', 'cardiovascular'], ['lasix']),
    'spironolactone': _entry(['diuretic', 'potassium-sparing', 'cardiovascular'], ['aldactone']),
    'chlorthalidone': _entry(['diuretic', 'thiazide', 'blood-pressure', 'cardiovascular'], ['hygroton', 'thalitone']),
    'bumetanide': _entry(['diuretic', 'loop-diuretic', 'cardiovascular'], ['bumex']),
    'torsemide': _entry(['diuretic', 'loop-diuretic', 'cardiovascular'], ['demadex']),
    'metolazone': _entry(['diuretic', 'thiazide-like', 'cardiovascular'], ['zaroxolyn']),
    'indapamide': _entry(['diuretic', 'thiazide-like', 'blood-pressure', 'cardiovascular'], ['lozol']),
    'triamterene': _entry(['diuretic', 'potassium-sparing', 'cardiovascular'], ['dyrenium']),
    'amiloride': _entry(['diuretic', 'potassium-sparing', 'cardiovascular'], ['midamor']),
    'eplerenone': _entry(['diuretic', 'potassium-sparing', 'cardiovascular'], ['inspra']),

    # Diabetes
    'metformin': _entry(['diabetes', 'biguanide', 'antidiabetic'], ['glucophage', 'fortamet', 'glumetza']),
    'glipizide': _entry(['diabetes', 'sulfonylurea', 'antidiabetic'], ['glucotrol']),
    'glyburide': _entry(['diabetes', 'sulfonylurea', 'antidiabetic'], ['diabeta', 'glynase', 'micronase']),
    'glimepiride': _entry(['diabetes', 'sulfonylurea', 'antidiabetic'], ['amaryl']),
    'sitagliptin': _entry(['diabetes', 'dpp4-inhibitor', 'antidiabetic'], ['januvia']),
    'linagliptin': _entry(['diabetes', 'dpp4-inhibitor', 'antidiabetic'], ['tradjenta']),
    'saxagliptin': _entry(['diabetes', 'dpp4-inhibitor', 'antidiabetic'], ['onglyza']),
    'alogliptin': _entry(['diabetes', 'dpp4-inhibitor', 'antidiabetic'], ['nesina']),
    'empagliflozin': _entry(['diabetes', 'sglt2-inhibitor', 'antidiabetic'], ['jardiance']),
    'dapagliflozin': _entry(['diabetes', 'sglt2-inhibitor', 'antidiabetic'], ['farxiga']),
    'canagliflozin': _entry(['diabetes', 'sglt2-inhibitor', 'antidiabetic'], ['invokana']),
    'pioglitazone': _entry(['diabetes', 'thiazolidinedione', 'antidiabetic'], ['actos']),
    'rosiglitazone': _entry(['diabetes', 'thiazolidinedione', 'antidiabetic'], ['avandia']),
    'liraglutide': _entry(['diabetes', 'glp1-agonist', 'antidiabetic'], ['victoza', 'saxenda']),
    'semaglutide': _entry(['diabetes', 'glp1-agonist', 'antidiabetic', 'weight-loss'], ['ozempic', 'wegovy', 'rybelsus']),
    'dulaglutide': _entry(['diabetes', 'glp1-agonist', 'antidiabetic'], ['trulicity']),
    'exenatide': _entry(['diabetes', 'glp1-agonist', 'antidiabetic'], ['byetta', 'bydureon']),
    'tirzepatide': _entry(['diabetes', 'gip-glp1-agonist', 'antidiabetic', 'weight-loss'], ['mounjaro', 'zepbound']),

    # Antidepressants
    'sertraline': _entry(_SSRI, ['zoloft']),
    'fluoxetine': _entry(_SSRI, ['prozac', 'sarafem']),
    'escitalopram': _entry(_SSRI, ['lexapro']),
    'citalopram': _entry(_SSRI, ['celexa']),
    'paroxetine': _entry(_SSRI, ['paxil', 'brisdelle']),
    'fluvoxamine': _entry(_SSRI, ['luvox']),
    'vilazodone': _entry(_SSRI, ['viibryd']),
    'vortioxetine': _entry(_SSRI, ['trintellix', 'brintellix']),
    'venlafaxine': _entry(_SNRI, ['effexor']),
    'duloxetine': _entry(_SNRI, ['cymbalta']),
    'desvenlafaxine': _entry(_SNRI, ['pristiq']),
    'bupropion': _entry(['antidepressant', 'psychiatric', 'smoking-cessation'], ['wellbutrin', 'zyban']),
    'mirtazapine': _entry(['antidepressant', 'psychiatric'], ['remeron']),
    'trazodone': _entry(['antidepressant', 'psychiatric', 'sleep-aid'], ['desyrel', 'oleptro']),
    'amitriptyline': _entry(['tricyclic', 'antidepressant', 'psychiatric'], ['elavil']),
    'nortriptyline': _entry(['tricyclic', 'antidepressant', 'psychiatric'], ['pamelor']),

    # Anticoagulants and antiplatelets
    'warfarin': _entry(_ANTICOAGULANT, ['coumadin', 'jantoven']),
    'apixaban': _entry(_ANTICOAGULANT, ['eliquis']),
    'rivaroxaban': _entry(_ANTICOAGULANT, ['xarelto']),
    'dabigatran': _entry(_ANTICOAGULANT, ['pradaxa']),
    'edoxaban': _entry(_ANTICOAGULANT, ['savaysa', 'lixiana']),
    'betrixaban': _entry(_ANTICOAGULANT, ['bevyxxa']),
    'heparin': _entry(_ANTICOAGULANT, ['unfractionated heparin']),
    'enoxaparin': _entry(_ANTICOAGULANT, ['lovenox']),
    'dalteparin': _entry(_ANTICOAGULANT, ['fragmin']),
    'fondaparinux': _entry(_ANTICOAGULANT, ['arixtra']),
    'clopidogrel': _entry(_ANTIPLATELET, ['plavix']),
    'ticagrelor': _entry(_ANTIPLATELET, ['brilinta']),
    'prasugrel': _entry(_ANTIPLATELET, ['effient']),

    # Gastrointestinal
    'omeprazole': _entry(_PPI, ['prilosec']),
    'pantoprazole': _entry(_PPI, ['protonix']),
    'esomeprazole': _entry(_PPI, ['nexium']),
    'lansoprazole': _entry(_PPI, ['prevacid']),
    'rabeprazole': _entry(_PPI, ['aciphex']),
    'dexlansoprazole': _entry(_PPI, ['dexilant']),
    'famotidine': _entry(['h2-blocker', 'acid-reducer', 'gi'], ['pepcid']),
    'ranitidine': _entry(['h2-blocker', 'acid-reducer', 'gi'], ['zantac']),
    'sucralfate': _entry(['gi-protectant', 'gi'], ['carafate']),
    'ondansetron': _entry(['antiemetic', 'gi'], ['zofran']),
    'metoclopramide': _entry(['antiemetic', 'prokinetic', 'gi'], ['reglan']),

    # Antibiotics
    'amoxicillin': _entry(['antibiotic', 'penicillin', 'beta-lactam'], ['amoxil', 'trimox']),
    'amoxicillin-clavulanate': _entry(['antibiotic', 'penicillin', 'beta-lactam'], ['augmentin', 'amoxicillin clavulanate']),
    'azithromycin': _entry(['antibiotic', 'macrolide'], ['zithromax', 'z-pack', 'zpack']),
    'ciprofloxacin': _entry(['antibiotic', 'fluoroquinolone'], ['cipro']),
    'levofloxacin': _entry(['antibiotic', 'fluoroquinolone'], ['levaquin']),
    'doxycycline': _entry(['antibiotic', 'tetracycline'], ['vibramycin', 'doryx']),
    'cephalexin': _entry(['antibiotic', 'cephalosporin', 'beta-lactam'], ['keflex']),
    'cefdinir': _entry(['antibiotic', 'cephalosporin', 'beta-lactam'], ['omnicef']),
    'sulfamethoxazole': _entry(['antibiotic', 'sulfonamide'], ['bactrim', 'septra', 'smz-tmp', 'tmp-smx']),
    'nitrofurantoin': _entry(['antibiotic', 'urinary-antiseptic'], ['macrobid', 'macrodantin']),
    'metronidazole': _entry(['antibiotic', 'antiprotozoal'], ['flagyl']),
    'clindamycin': _entry(['antibiotic', 'lincosamide'], ['cleocin']),
    'penicillin': _entry(['antibiotic', 'penicillin', 'beta-lactam'], ['penicillin v', 'penicillin vk', 'pen-vk', 'veetids']),

    # Respiratory and allergy
    'albuterol': _entry(['bronchodilator', 'beta-agonist', 'respiratory'], ['proventil', 'ventolin', 'proair']),
    'montelukast': _entry(['leukotriene-inhibitor', 'respiratory', 'allergy'], ['singulair']),
    'fluticasone': _entry(['corticosteroid', 'inhaled-steroid', 'respiratory', 'allergy'], ['flonase', 'flovent']),
    'budesonide': _entry(['corticosteroid', 'inhaled-steroid', 'respiratory'], ['pulmicort', 'rhinocort']),
    'tiotropium': _entry(['anticholinergic', 'bronchodilator', 'respiratory'], ['spiriva']),
    'ipratropium': _entry(['anticholinergic', 'bronchodilator', 'respiratory'], ['atrovent']),
    'loratadine': _entry(['antihistamine', 'allergy'], ['claritin']),
    'cetirizine': _entry(['antihistamine', 'allergy'], ['zyrtec']),
    'fexofenadine': _entry(['antihistamine', 'allergy'], ['allegra']),
    'diphenhydramine': _entry(['antihistamine', 'allergy', 'sleep-aid'], ['benadryl']),

    # Steroids and hormones
    'prednisone': _entry(['corticosteroid', 'anti-inflammatory', 'immunosuppressant'], ['deltasone', 'rayos']),
    'methylprednisolone': _entry(['corticosteroid', 'anti-inflammatory', 'immunosuppressant'], ['medrol', 'solu-medrol']),
    'levothyroxine': _entry(['thyroid', 'hormone-replacement'], ['synthroid', 'levoxyl', 'tirosint', 'unithroid']),
    'liothyronine': _entry(['thyroid', 'hormone-replacement'], ['cytomel']),
    'methimazole': _entry(['antithyroid', 'thyroid'], ['tapazole']),

    # Sleep, anxiety, neuropathic pain
    'zolpidem': _entry(['sedative', 'sleep-aid', 'hypnotic'], ['ambien']),
    'eszopiclone': _entry(['sedative', 'sleep-aid', 'hypnotic'], ['lunesta']),
    'alprazolam': _entry(['benzodiazepine', 'anxiolytic', 'psychiatric'], ['xanax']),
    'lorazepam': _entry(['benzodiazepine', 'anxiolytic', 'psychiatric'], ['ativan']),
    'clonazepam': _entry(['benzodiazepine', 'anxiolytic', 'anticonvulsant', 'psychiatric'], ['klonopin']),
    'diazepam': _entry(['benzodiazepine', 'anxiolytic', 'muscle-relaxant', 'psychiatric'], ['valium']),
    'buspirone': _entry(['anxiolytic', 'psychiatric'], ['buspar']),
    'hydroxyzine': _entry(['antihistamine', 'anxiolytic', 'psychiatric'], ['vistaril', 'atarax']),
    'gabapentin': _entry(['anticonvulsant', 'neuropathic-pain', 'psychiatric'], ['neurontin', 'gralise']),
    'pregabalin': _entry(['anticonvulsant', 'neuropathic-pain', 'psychiatric'], ['lyrica']),
}

CANONICAL_MEDICATIONS: Mapping[str, CanonicalMedicationEntry] = MappingProxyType(_CANONICAL_DATA)


def _build_alias_index() -> Dict[str, str]:
    index: Dict[str, str] = {}
    for canonical, entry in CANONICAL_MEDICATIONS.items():
        index[canonical] = canonical
        for alias in entry.aliases:
            index[alias.lower()] = canonical
    return index


# Every generic and brand name (lower case) -> canonical generic name
ALIAS_TO_CANONICAL: Mapping[str, str] = MappingProxyType(_build_alias_index())
